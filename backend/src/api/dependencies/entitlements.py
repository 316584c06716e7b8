"""
Premium entitlement dependencies.

Provides a reusable FastAPI dependency for gating routes on premium
features. Denial is a 402 Payment Required carrying the reason and the
upgrade URL, so clients can tell it apart from any other failure.
"""

import logging
from typing import Callable

from fastapi import HTTPException, status, Depends

from src.auth.token_service import AuthenticatedAccount
from src.api.dependencies.auth import get_current_account
from src.api.dependencies.services import get_feature_gate, get_settings
from src.config.settings import Settings
from src.services.feature_gate import AccessDecision, FeatureGate


logger = logging.getLogger(__name__)

PREMIUM_REQUIRED_CODE = "PREMIUM_REQUIRED"


def require_premium_feature(feature_id: str) -> Callable:
    """
    Factory function to create a premium feature check dependency.

    Args:
        feature_id: Feature identifier from the premium catalogue

    Returns:
        A FastAPI dependency that returns the AccessDecision when allowed
    """

    async def check_premium_feature(
        account: AuthenticatedAccount = Depends(get_current_account),
        gate: FeatureGate = Depends(get_feature_gate),
        settings: Settings = Depends(get_settings),
    ) -> AccessDecision:
        """
        Dependency to check premium feature access.

        Raises 402 Payment Required if the account is not entitled.
        """
        decision = await gate.check_access(account.account_id, feature_id)

        if not decision.has_access:
            logger.warning(
                "Premium feature access denied",
                extra={
                    "account_id": account.account_id,
                    "current_tier": decision.tier.value,
                    "feature": feature_id,
                },
            )
            raise HTTPException(
                status_code=status.HTTP_402_PAYMENT_REQUIRED,
                detail={
                    "code": PREMIUM_REQUIRED_CODE,
                    "feature": feature_id,
                    "reason": decision.reason,
                    "current_tier": decision.tier.value,
                    "upgrade_url": settings.upgrade_url,
                },
            )

        return decision

    return check_premium_feature
