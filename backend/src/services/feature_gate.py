"""
Premium feature gating.

Which features are premium-only comes from config/premium_features.yml;
the rule is: access = feature is not premium-only OR account is premium.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from src.config.premium_features import PremiumFeatureCatalogue
from src.models.subscription import SubscriptionTier, SubscriptionStatus
from src.services.entitlement_resolver import EntitlementResolver

logger = logging.getLogger(__name__)

GENERIC_DENIAL_REASON = "Unable to verify access right now. Please try again later."


@dataclass(frozen=True)
class AccessDecision:
    """Result of a feature access check."""
    has_access: bool
    is_premium: bool
    tier: SubscriptionTier
    feature: str
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    upgrade_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "has_access": self.has_access,
            "is_premium": self.is_premium,
            "tier": self.tier.value,
            "feature": self.feature,
            "reason": self.reason,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "upgrade_url": self.upgrade_url,
        }


class FeatureGate:
    """
    Maps feature identifiers to access decisions.

    Every denial carries upgrade_url so the client can offer the upgrade path.
    """

    def __init__(
        self,
        resolver: EntitlementResolver,
        catalogue: PremiumFeatureCatalogue,
        upgrade_url: Optional[str] = None,
    ):
        self.resolver = resolver
        self.catalogue = catalogue
        self.upgrade_url = upgrade_url

    def is_premium_feature(self, feature_id: str) -> bool:
        return self.catalogue.is_premium(feature_id)

    async def check_access(self, account_id: str, feature_id: str) -> AccessDecision:
        """
        Decide whether an account may use a feature.

        Never raises; an internal failure denies access with a generic reason.
        """
        try:
            entitlement = await self.resolver.resolve(account_id)

            has_access = not self.is_premium_feature(feature_id) or entitlement.is_premium
            reason = None
            if not has_access:
                reason = self._denial_reason(
                    feature_id,
                    expired=(
                        entitlement.tier == SubscriptionTier.PREMIUM
                        and entitlement.status == SubscriptionStatus.EXPIRED
                    )
                )
                logger.info("Premium feature access denied", extra={
                    "account_id": account_id,
                    "feature": feature_id,
                    "tier": entitlement.tier.value
                })

            return AccessDecision(
                has_access=has_access,
                is_premium=entitlement.is_premium,
                tier=entitlement.tier,
                feature=feature_id,
                reason=reason,
                expires_at=entitlement.expires_at,
                upgrade_url=None if has_access else self.upgrade_url,
            )
        except Exception:
            logger.exception("Feature access check failed", extra={
                "account_id": account_id,
                "feature": feature_id
            })
            return AccessDecision(
                has_access=False,
                is_premium=False,
                tier=SubscriptionTier.FREE,
                feature=feature_id,
                reason=GENERIC_DENIAL_REASON,
                upgrade_url=self.upgrade_url,
            )

    def _denial_reason(self, feature_id: str, expired: bool) -> str:
        name = self.catalogue.display_name(feature_id)
        if expired:
            return f"Your premium subscription has expired. Renew to keep using {name}."
        return f"{name} requires a premium subscription."
