"""
Premium feature routes.

GET /api/premium/features/{feature_id} answers 200 when the caller may use
the feature and 402 (with an upgrade URL) when it is premium-only and the
caller is not premium.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.api.dependencies.auth import get_current_account
from src.api.dependencies.entitlements import require_premium_feature
from src.api.dependencies.services import get_feature_gate, get_settings
from src.auth.token_service import AuthenticatedAccount
from src.config.settings import Settings
from src.services.feature_gate import FeatureGate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/premium", tags=["premium"])


class FeatureAccessResponse(BaseModel):
    feature: str
    has_access: bool
    is_premium: bool
    tier: str


@router.get("/features/{feature_id}", response_model=FeatureAccessResponse)
async def get_feature_access(
    feature_id: str,
    account: AuthenticatedAccount = Depends(get_current_account),
    gate: FeatureGate = Depends(get_feature_gate),
    settings: Settings = Depends(get_settings),
):
    check = require_premium_feature(feature_id)
    decision = await check(account=account, gate=gate, settings=settings)

    return FeatureAccessResponse(
        feature=decision.feature,
        has_access=decision.has_access,
        is_premium=decision.is_premium,
        tier=decision.tier.value,
    )


class OfflineModeResponse(BaseModel):
    enabled: bool
    expires_at: Optional[str] = None


@router.get("/offline-mode", response_model=OfflineModeResponse)
async def get_offline_mode(decision=Depends(require_premium_feature("offline_mode"))):
    """Offline mode settings (premium only)."""
    return OfflineModeResponse(
        enabled=True,
        expires_at=decision.expires_at.isoformat() if decision.expires_at else None,
    )
