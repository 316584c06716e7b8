"""
Entitlement resolution.

Computes whether an account may use premium features right now by merging
the locally stored subscription record with the billing provider's live
state.

Rules:
- A missing record is created as free/active on first check.
- A record is locally active while its status is active (or cancelled with
  access remaining until the paid period ends) and expires_at has not passed.
- The provider is consulted only for locally active records that carry a
  provider subscription reference. Disagreement is written back to the
  store; provider failure falls back to the local record.
- Resolution never raises. Any unexpected failure yields the free default.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from src.integrations.stripe.billing_client import (
    StripeBillingClient,
    ProviderSubscription,
    BillingProviderError,
)
from src.models.subscription import (
    SubscriptionRecord,
    SubscriptionTier,
    SubscriptionStatus,
    BillingPeriod,
    FREE_PLAN_ID,
)
from src.repositories.subscription_repository import (
    SubscriptionRepository,
    SubscriptionStoreError,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Entitlement:
    """Resolved entitlement for an account."""
    is_premium: bool
    tier: SubscriptionTier
    status: SubscriptionStatus
    expires_at: Optional[datetime] = None
    plan_id: Optional[str] = None
    billing_period: Optional[BillingPeriod] = None
    cancellation_pending: bool = False

    @classmethod
    def default_free(cls) -> "Entitlement":
        return cls(
            is_premium=False,
            tier=SubscriptionTier.FREE,
            status=SubscriptionStatus.ACTIVE,
            plan_id=FREE_PLAN_ID,
        )

    def to_dict(self) -> dict:
        return {
            "is_premium": self.is_premium,
            "tier": self.tier.value,
            "status": self.status.value,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "plan_id": self.plan_id,
            "billing_period": self.billing_period.value if self.billing_period else None,
            "cancellation_pending": self.cancellation_pending,
        }


def is_locally_active(record: SubscriptionRecord, now: datetime) -> bool:
    """
    Check the stored record alone.

    A cancelled record keeps access until expires_at; without an expiry it
    has nothing left to run out.
    """
    if record.status == SubscriptionStatus.ACTIVE:
        return record.expires_at is None or now <= record.expires_at
    if record.status == SubscriptionStatus.CANCELLED:
        return record.expires_at is not None and now <= record.expires_at
    return False


class EntitlementResolver:
    """
    Resolves entitlements for accounts.

    Usage:
        resolver = EntitlementResolver(repository, billing_client)
        entitlement = await resolver.resolve(account_id)
        if entitlement.is_premium:
            ...
    """

    def __init__(
        self,
        repository: SubscriptionRepository,
        billing_client: StripeBillingClient,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.billing_client = billing_client
        self._clock = clock

    async def resolve(self, account_id: str) -> Entitlement:
        """
        Resolve the current entitlement for an account.

        Never raises: if the store or the record itself is unusable the
        free default is returned and the failure is logged.
        """
        try:
            return await self._resolve(account_id)
        except Exception:
            logger.exception("Entitlement resolution failed, degrading to free tier", extra={
                "account_id": account_id
            })
            return Entitlement.default_free()

    async def _resolve(self, account_id: str) -> Entitlement:
        now = self._clock()

        record = self.repository.find(account_id)
        if record is None:
            record = self.repository.create_default(account_id)
            logger.info("Created default subscription record", extra={"account_id": account_id})

        is_active = is_locally_active(record, now)

        if record.provider_subscription_ref and is_active:
            record, is_active = await self._reconcile(record, is_active, now)

        return self._build(record, is_active)

    async def _reconcile(
        self,
        record: SubscriptionRecord,
        is_active: bool,
        now: datetime,
    ) -> Tuple[SubscriptionRecord, bool]:
        """Bring the local record into agreement with the provider."""
        try:
            live = await self.billing_client.retrieve_subscription(record.provider_subscription_ref)
        except BillingProviderError as e:
            logger.warning("Billing provider unavailable, using last known state", extra={
                "account_id": record.account_id,
                "provider_subscription_ref": record.provider_subscription_ref,
                "error": str(e)
            })
            return record, is_active

        if live.is_live == is_active:
            if live.is_live and live.current_period_end and live.current_period_end != record.expires_at:
                corrected = record.with_changes(expires_at=live.current_period_end)
                self._persist(corrected, reason="period_end_changed")
                return corrected, is_locally_active(corrected, now)
            return record, is_active

        corrected = self._corrected_record(record, live, now)
        logger.info("Local subscription disagreed with billing provider", extra={
            "account_id": record.account_id,
            "provider_status": live.status,
            "local_active": is_active
        })
        self._persist(corrected, reason="liveness_mismatch")
        return corrected, live.is_live

    def _corrected_record(
        self,
        record: SubscriptionRecord,
        live: ProviderSubscription,
        now: datetime,
    ) -> SubscriptionRecord:
        if live.is_live:
            return record.with_changes(
                status=SubscriptionStatus.ACTIVE,
                expires_at=live.current_period_end or record.expires_at,
                cancelled_at=None,
            )

        ended_at = live.ended_at if live.ended_at and live.ended_at <= now else now
        return record.with_changes(
            status=SubscriptionStatus.CANCELLED,
            expires_at=ended_at,
            cancelled_at=record.cancelled_at or live.canceled_at or now,
        )

    def _persist(self, record: SubscriptionRecord, reason: str) -> None:
        # The corrected entitlement is still returned when the write fails;
        # the next check or webhook converges the store.
        try:
            self.repository.upsert(record)
        except SubscriptionStoreError as e:
            logger.warning("Failed to persist reconciled subscription", extra={
                "account_id": record.account_id,
                "reason": reason,
                "error": str(e)
            })

    def _build(self, record: SubscriptionRecord, is_active: bool) -> Entitlement:
        return Entitlement(
            is_premium=is_active and record.tier == SubscriptionTier.PREMIUM,
            tier=record.tier,
            status=SubscriptionStatus.ACTIVE if is_active else SubscriptionStatus.EXPIRED,
            expires_at=record.expires_at,
            plan_id=record.plan_id,
            billing_period=record.billing_period,
            cancellation_pending=is_active and record.status == SubscriptionStatus.CANCELLED,
        )
