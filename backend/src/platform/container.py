"""
Process-wide service container.

Everything that holds a connection or a credential is constructed once at
startup and stored on app.state.container. Request handlers get
per-request objects (DB session, repositories, services) from the
dependencies in src.api.dependencies.services; tests build a container
with test doubles instead.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from src.auth.google_verifier import GoogleIdentityVerifier
from src.auth.token_service import TokenService
from src.config.premium_features import PremiumFeatureCatalogue, PremiumFeaturesLoader
from src.config.settings import Settings
from src.database.session import create_db_engine, create_session_factory
from src.integrations.stripe.billing_client import StripeBillingClient

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Long-lived collaborators shared by all requests."""
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    billing_client: StripeBillingClient
    premium_catalogue: PremiumFeatureCatalogue
    token_service: TokenService
    identity_verifier: GoogleIdentityVerifier

    @classmethod
    def build(cls, settings: Settings) -> "ServiceContainer":
        """Construct every collaborator from validated settings."""
        engine = create_db_engine(settings.database_url)

        container = cls(
            settings=settings,
            engine=engine,
            session_factory=create_session_factory(engine),
            billing_client=StripeBillingClient(
                api_key=settings.stripe_secret_key,
                webhook_secret=settings.stripe_webhook_secret,
                timeout_seconds=settings.stripe_timeout_seconds,
            ),
            premium_catalogue=PremiumFeaturesLoader(settings.premium_features_config).load(),
            token_service=TokenService(settings.jwt_secret, expiry_days=settings.jwt_expiry_days),
            identity_verifier=GoogleIdentityVerifier(client_id=settings.google_client_id),
        )

        logger.info("Service container built", extra={
            "environment": settings.environment,
            "premium_features": len(container.premium_catalogue.features),
            "admin_emails": len(settings.admin_emails)
        })
        return container

    def dispose(self) -> None:
        self.engine.dispose()
