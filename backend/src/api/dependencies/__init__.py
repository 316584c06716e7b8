"""
API Dependencies module.

Provides shared FastAPI dependencies for route handlers.
"""

from src.api.dependencies.auth import get_current_account
from src.api.dependencies.entitlements import require_premium_feature, PREMIUM_REQUIRED_CODE

__all__ = [
    "get_current_account",
    "require_premium_feature",
    "PREMIUM_REQUIRED_CODE",
]
