"""
Root test configuration and fixtures.

Provides:
- db_engine / db_session: fresh in-memory SQLite database per test
- subscription_repository / account_repository
- billing_client: in-memory Stripe double (helpers/mock_billing_client.py)
- settings / container / client: application wired with the doubles
"""

import os
import pytest
from datetime import datetime, timezone
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from src.tests.helpers.stripe_signing import TEST_WEBHOOK_SECRET

# Set test environment
os.environ.setdefault("ENV", "test")

TEST_JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"
ADMIN_EMAIL = "admin@jogolinga.test"


@pytest.fixture(scope="session", autouse=True)
def _httpx_app_kwarg_patch():
    """
    Compatibility patch for httpx>=0.28 where Client(app=...) is not supported.

    Starlette's TestClient (used by FastAPI) passes app= into httpx.Client.
    This patch removes the app kwarg to avoid TypeError in environments
    with newer httpx while remaining safe for older versions.
    """
    import httpx

    original_init = httpx.Client.__init__

    def patched_init(self, *args, **kwargs):
        kwargs.pop("app", None)
        return original_init(self, *args, **kwargs)

    httpx.Client.__init__ = patched_init
    try:
        yield
    finally:
        httpx.Client.__init__ = original_init


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with every table created."""
    from src.models import Base

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def subscription_repository(db_session):
    from src.repositories.subscription_repository import SubscriptionRepository
    return SubscriptionRepository(db_session)


@pytest.fixture
def account_repository(db_session):
    from src.repositories.account_repository import AccountRepository
    return AccountRepository(db_session)


@pytest.fixture
def billing_client():
    from src.tests.helpers.mock_billing_client import MockStripeBillingClient
    return MockStripeBillingClient()


@pytest.fixture
def fixed_now():
    return datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    from src.config.settings import Settings
    return Settings.from_env({
        "DATABASE_URL": "sqlite:///:memory:",
        "JWT_SECRET": TEST_JWT_SECRET,
        "GOOGLE_CLIENT_ID": "test-client-id.apps.googleusercontent.com",
        "STRIPE_SECRET_KEY": "sk_test_mock",
        "STRIPE_WEBHOOK_SECRET": TEST_WEBHOOK_SECRET,
        "FRONTEND_URL": "https://app.jogolinga.test",
        "ADMIN_EMAILS": ADMIN_EMAIL,
        "ENV": "test",
    })


@pytest.fixture
def token_service(settings):
    from src.auth.token_service import TokenService
    return TokenService(settings.jwt_secret, expiry_days=settings.jwt_expiry_days)


@pytest.fixture
def identity_verifier():
    from unittest.mock import MagicMock
    from src.auth.google_verifier import GoogleIdentityVerifier
    return MagicMock(spec=GoogleIdentityVerifier)


@pytest.fixture
def container(settings, db_engine, session_factory, billing_client, token_service, identity_verifier):
    """ServiceContainer wired with the SQLite engine and test doubles."""
    from src.config.premium_features import PremiumFeatureCatalogue, DEFAULT_PREMIUM_FEATURES
    from src.platform.container import ServiceContainer

    return ServiceContainer(
        settings=settings,
        engine=db_engine,
        session_factory=session_factory,
        billing_client=billing_client,
        premium_catalogue=PremiumFeatureCatalogue(features=dict(DEFAULT_PREMIUM_FEATURES)),
        token_service=token_service,
        identity_verifier=identity_verifier,
    )


@pytest.fixture
def client(container):
    """TestClient for the full application."""
    from fastapi.testclient import TestClient
    from main import create_app

    app = create_app(container)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def create_account(account_repository):
    """Factory creating a stored account and returning its profile."""
    counter = {"n": 0}

    def _create(email: str = None):
        counter["n"] += 1
        n = counter["n"]
        return account_repository.upsert_from_identity(
            google_subject=f"google-sub-{n}",
            email=email or f"learner{n}@example.com",
            name=f"Learner {n}",
        )

    return _create


@pytest.fixture
def auth_headers(token_service):
    """Factory for Authorization headers for an account."""

    def _headers(account_id: str, email: str = "learner@example.com", is_admin: bool = False):
        token = token_service.issue(account_id, email, is_admin=is_admin)
        return {"Authorization": f"Bearer {token}"}

    return _headers
