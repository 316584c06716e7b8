"""
Service dependencies.

Resolves the ServiceContainer from app.state and builds the per-request
objects route handlers use. Tests swap collaborators by installing their
own container on app.state.
"""

from typing import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from src.config.settings import Settings
from src.platform.container import ServiceContainer
from src.repositories.account_repository import AccountRepository
from src.repositories.subscription_repository import SubscriptionRepository
from src.services.admin_override import AdminOverrideService
from src.services.billing_service import BillingService
from src.services.billing_webhook_handler import BillingWebhookHandler, get_webhook_handler
from src.services.entitlement_resolver import EntitlementResolver
from src.services.feature_gate import FeatureGate
from src.services.sign_in_service import SignInService


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_settings(container: ServiceContainer = Depends(get_container)) -> Settings:
    return container.settings


def get_db_session(container: ServiceContainer = Depends(get_container)) -> Generator[Session, None, None]:
    """
    Get a database session for the request.

    Yields:
        SQLAlchemy Session
    """
    session = container.session_factory()
    try:
        yield session
    finally:
        session.close()


def get_subscription_repository(db: Session = Depends(get_db_session)) -> SubscriptionRepository:
    return SubscriptionRepository(db)


def get_account_repository(db: Session = Depends(get_db_session)) -> AccountRepository:
    return AccountRepository(db)


def get_entitlement_resolver(
    container: ServiceContainer = Depends(get_container),
    subscriptions: SubscriptionRepository = Depends(get_subscription_repository),
) -> EntitlementResolver:
    return EntitlementResolver(subscriptions, container.billing_client)


def get_feature_gate(
    container: ServiceContainer = Depends(get_container),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
) -> FeatureGate:
    return FeatureGate(resolver, container.premium_catalogue, upgrade_url=container.settings.upgrade_url)


def get_billing_service(
    container: ServiceContainer = Depends(get_container),
    subscriptions: SubscriptionRepository = Depends(get_subscription_repository),
    accounts: AccountRepository = Depends(get_account_repository),
) -> BillingService:
    return BillingService(subscriptions, accounts, container.billing_client)


def get_billing_webhook_handler(
    container: ServiceContainer = Depends(get_container),
    subscriptions: SubscriptionRepository = Depends(get_subscription_repository),
    billing_service: BillingService = Depends(get_billing_service),
) -> BillingWebhookHandler:
    return get_webhook_handler(subscriptions, container.billing_client, billing_service)


def get_sign_in_service(
    container: ServiceContainer = Depends(get_container),
    subscriptions: SubscriptionRepository = Depends(get_subscription_repository),
    accounts: AccountRepository = Depends(get_account_repository),
) -> SignInService:
    return SignInService(
        accounts=accounts,
        subscriptions=subscriptions,
        admin_override=AdminOverrideService(subscriptions, container.settings.admin_emails),
        token_service=container.token_service,
    )
