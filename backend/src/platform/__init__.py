"""
Platform-level wiring shared by the application and its tests.

- container: ServiceContainer holding the long-lived collaborators
"""

from src.platform.container import ServiceContainer

__all__ = ["ServiceContainer"]
