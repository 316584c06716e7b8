"""
Administrator entitlement override.

Accounts whose email is on the ADMIN_EMAILS allow-list get a permanent
premium record on sign-in. Provisioning is best-effort: a failure is
logged and never fails the sign-in.
"""

import logging
from typing import FrozenSet, Iterable, Optional

from src.models.subscription import (
    SubscriptionRecord,
    SubscriptionTier,
    SubscriptionStatus,
    BillingPeriod,
    ADMIN_PLAN_ID,
)
from src.repositories.subscription_repository import (
    SubscriptionRepository,
    SubscriptionStoreError,
)

logger = logging.getLogger(__name__)


def admin_record(account_id: str, existing: Optional[SubscriptionRecord] = None) -> SubscriptionRecord:
    """
    Permanent premium record for an administrator.

    Provider references of an existing record are kept so a purchase made
    before the grant can still be managed.
    """
    return SubscriptionRecord(
        account_id=account_id,
        tier=SubscriptionTier.PREMIUM,
        status=SubscriptionStatus.ACTIVE,
        expires_at=None,
        billing_period=BillingPeriod.PERMANENT,
        plan_id=ADMIN_PLAN_ID,
        provider_customer_ref=existing.provider_customer_ref if existing else None,
        provider_subscription_ref=None,
        cancelled_at=None,
    )


class AdminOverrideService:
    """Grants permanent premium access to allow-listed identities."""

    def __init__(self, repository: SubscriptionRepository, admin_emails: Iterable[str]):
        self.repository = repository
        self._admin_emails: FrozenSet[str] = frozenset(e.strip().lower() for e in admin_emails if e)

    def is_admin(self, email: Optional[str]) -> bool:
        return bool(email) and email.strip().lower() in self._admin_emails

    def provision(self, account_id: str, email: Optional[str]) -> bool:
        """
        Upsert the permanent premium record if email is allow-listed.

        Returns:
            True if the record was written, False otherwise (not an
            administrator, or the write failed)
        """
        if not self.is_admin(email):
            return False

        try:
            existing = self.repository.find(account_id)
            self.repository.upsert(admin_record(account_id, existing))
        except SubscriptionStoreError as e:
            logger.error("Admin entitlement provisioning failed", extra={
                "account_id": account_id,
                "error": str(e)
            })
            return False

        logger.info("Admin entitlement provisioned", extra={"account_id": account_id})
        return True
