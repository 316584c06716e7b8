"""
Health and status routes.

/api/health is a liveness probe and touches nothing; /api/status pings the
database and reports which credentials are configured.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.api.dependencies.services import get_container, get_subscription_repository
from src.platform.container import ServiceContainer
from src.repositories.subscription_repository import SubscriptionRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    timestamp: str


class StatusResponse(BaseModel):
    status: str
    environment: str
    database: str
    services: dict[str, bool]
    timestamp: str


@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(status="ok", timestamp=datetime.now(timezone.utc).isoformat())


@router.get("/status", response_model=StatusResponse)
async def service_status(
    container: ServiceContainer = Depends(get_container),
    subscriptions: SubscriptionRepository = Depends(get_subscription_repository),
):
    """Report database reachability and configured integrations."""
    database_ok = subscriptions.ping()
    settings = container.settings

    return StatusResponse(
        status="ok" if database_ok else "degraded",
        environment=settings.environment,
        database="connected" if database_ok else "unreachable",
        services={
            "google_auth": bool(settings.google_client_id),
            "stripe": bool(settings.stripe_secret_key),
            "stripe_webhooks": bool(settings.stripe_webhook_secret),
            "admin_allow_list": bool(settings.admin_emails),
        },
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
