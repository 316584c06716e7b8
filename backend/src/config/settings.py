"""
Process configuration read from the environment.

Required credentials are checked once at startup; a missing one raises
ConfigurationError and the application refuses to start serving.

Usage:
    from src.config.settings import Settings

    settings = Settings.from_env()
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional, FrozenSet, List, Mapping

logger = logging.getLogger(__name__)

REQUIRED_ENV_VARS = (
    "DATABASE_URL",
    "JWT_SECRET",
    "GOOGLE_CLIENT_ID",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
)

DEFAULT_FRONTEND_URL = "http://localhost:3000"
DEFAULT_STRIPE_TIMEOUT_SECONDS = 10.0
DEFAULT_JWT_EXPIRY_DAYS = 7


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = missing or []


def parse_admin_emails(raw: Optional[str]) -> FrozenSet[str]:
    """Parse the comma separated admin allow-list (case-insensitive)."""
    if not raw:
        return frozenset()
    return frozenset(
        email.strip().lower() for email in raw.split(",") if email.strip()
    )


def parse_cors_origins(raw: Optional[str], frontend_url: str) -> List[str]:
    """Parse the comma separated CORS allow-list; the frontend is always allowed."""
    origins = [origin.strip() for origin in (raw or "").split(",") if origin.strip()]
    if frontend_url not in origins:
        origins.append(frontend_url)
    return origins


@dataclass(frozen=True)
class Settings:
    """Validated application settings."""
    database_url: str
    jwt_secret: str
    google_client_id: str
    stripe_secret_key: str
    stripe_webhook_secret: str
    environment: str = "development"
    frontend_url: str = DEFAULT_FRONTEND_URL
    admin_emails: FrozenSet[str] = field(default_factory=frozenset)
    stripe_timeout_seconds: float = DEFAULT_STRIPE_TIMEOUT_SECONDS
    jwt_expiry_days: int = DEFAULT_JWT_EXPIRY_DAYS
    cors_origins: List[str] = field(default_factory=list)
    premium_features_config: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def upgrade_url(self) -> str:
        return f"{self.frontend_url.rstrip('/')}/subscription"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Raises:
            ConfigurationError: If a required variable is missing or a
                numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        missing = [name for name in REQUIRED_ENV_VARS if not env.get(name)]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}",
                missing=missing
            )

        try:
            stripe_timeout = float(env.get("STRIPE_TIMEOUT_SECONDS", DEFAULT_STRIPE_TIMEOUT_SECONDS))
            jwt_expiry_days = int(env.get("JWT_EXPIRY_DAYS", DEFAULT_JWT_EXPIRY_DAYS))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}")

        frontend_url = env.get("FRONTEND_URL") or DEFAULT_FRONTEND_URL

        return cls(
            database_url=env["DATABASE_URL"],
            jwt_secret=env["JWT_SECRET"],
            google_client_id=env["GOOGLE_CLIENT_ID"],
            stripe_secret_key=env["STRIPE_SECRET_KEY"],
            stripe_webhook_secret=env["STRIPE_WEBHOOK_SECRET"],
            environment=env.get("ENV") or env.get("ENVIRONMENT") or "development",
            frontend_url=frontend_url,
            admin_emails=parse_admin_emails(env.get("ADMIN_EMAILS")),
            stripe_timeout_seconds=stripe_timeout,
            jwt_expiry_days=jwt_expiry_days,
            cors_origins=parse_cors_origins(env.get("CORS_ORIGINS"), frontend_url),
            premium_features_config=env.get("PREMIUM_FEATURES_CONFIG"),
        )
