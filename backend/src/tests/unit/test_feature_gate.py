"""
Unit tests for FeatureGate.
"""

import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, MagicMock

from src.config.premium_features import PremiumFeatureCatalogue, DEFAULT_PREMIUM_FEATURES
from src.models.subscription import SubscriptionTier, SubscriptionStatus, BillingPeriod
from src.services.entitlement_resolver import Entitlement
from src.services.feature_gate import FeatureGate, GENERIC_DENIAL_REASON


@pytest.fixture
def catalogue():
    return PremiumFeatureCatalogue(features=dict(DEFAULT_PREMIUM_FEATURES))


UPGRADE_URL = "https://app.jogolinga.test/subscription"


def make_gate(catalogue, entitlement=None, error=None):
    resolver = MagicMock()
    resolver.resolve = AsyncMock(return_value=entitlement, side_effect=error)
    return FeatureGate(resolver, catalogue, upgrade_url=UPGRADE_URL)


PREMIUM = Entitlement(
    is_premium=True,
    tier=SubscriptionTier.PREMIUM,
    status=SubscriptionStatus.ACTIVE,
    expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
    plan_id="premium_monthly",
    billing_period=BillingPeriod.MONTHLY,
)

EXPIRED_PREMIUM = Entitlement(
    is_premium=False,
    tier=SubscriptionTier.PREMIUM,
    status=SubscriptionStatus.EXPIRED,
    expires_at=datetime.now(timezone.utc) - timedelta(days=1),
    plan_id="premium_monthly",
)


class TestAccessRule:

    @pytest.mark.asyncio
    async def test_free_account_can_use_free_feature(self, catalogue):
        gate = make_gate(catalogue, Entitlement.default_free())

        decision = await gate.check_access("acc", "basic_vocabulary")

        assert decision.has_access is True
        assert decision.is_premium is False
        assert decision.reason is None

    @pytest.mark.asyncio
    async def test_free_account_denied_premium_feature(self, catalogue):
        gate = make_gate(catalogue, Entitlement.default_free())

        decision = await gate.check_access("acc", "offline_mode")

        assert decision.has_access is False
        assert decision.tier == SubscriptionTier.FREE
        assert "premium" in decision.reason.lower()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("feature_id", sorted(DEFAULT_PREMIUM_FEATURES))
    async def test_premium_account_can_use_every_premium_feature(self, catalogue, feature_id):
        gate = make_gate(catalogue, PREMIUM)

        decision = await gate.check_access("acc", feature_id)

        assert decision.has_access is True
        assert decision.expires_at == PREMIUM.expires_at

    @pytest.mark.asyncio
    async def test_expired_premium_gets_renewal_reason(self, catalogue):
        gate = make_gate(catalogue, EXPIRED_PREMIUM)

        decision = await gate.check_access("acc", "advanced_stats")

        assert decision.has_access is False
        assert "expired" in decision.reason.lower()


class TestFailureHandling:

    @pytest.mark.asyncio
    async def test_internal_failure_denies_with_generic_reason(self, catalogue):
        gate = make_gate(catalogue, error=RuntimeError("boom"))

        decision = await gate.check_access("acc", "basic_vocabulary")

        assert decision.has_access is False
        assert decision.reason == GENERIC_DENIAL_REASON
        assert decision.upgrade_url == UPGRADE_URL


class TestUpgradePath:

    @pytest.mark.asyncio
    async def test_denial_carries_upgrade_url(self, catalogue):
        gate = make_gate(catalogue, Entitlement.default_free())

        decision = await gate.check_access("acc", "offline_mode")

        assert decision.upgrade_url == UPGRADE_URL
        assert decision.to_dict()["upgrade_url"] == UPGRADE_URL

    @pytest.mark.asyncio
    async def test_granted_access_has_no_upgrade_url(self, catalogue):
        gate = make_gate(catalogue, PREMIUM)

        decision = await gate.check_access("acc", "offline_mode")

        assert decision.has_access is True
        assert decision.upgrade_url is None
