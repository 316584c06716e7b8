"""
Billing service for premium subscriptions.

Orchestrates:
- Checkout session creation
- Payment confirmation (re-read from the provider, never trusted from the client)
- Cancellation at period end and reactivation
- Customer portal and default payment method
- Payment history

CRITICAL: account_id always comes from the verified application token.
Checkout confirmation is attributed through the session's server-side
cross-reference, and a session started by another account is rejected.

Provider failures propagate as BillingProviderError: there is no safe
default for "did the payment succeed", so nothing is written.
"""

import logging
from typing import Callable, List, Optional, Tuple
from datetime import datetime, timezone
from dataclasses import dataclass

from src.integrations.stripe.billing_client import (
    StripeBillingClient,
    ProviderCheckoutSession,
    ProviderSubscription,
)
from src.models.payment_history import PaymentEntry
from src.models.subscription import (
    SubscriptionRecord,
    SubscriptionTier,
    SubscriptionStatus,
    PREMIUM_PLAN_ID,
)
from src.repositories.account_repository import AccountRepository
from src.repositories.subscription_repository import SubscriptionRepository

logger = logging.getLogger(__name__)


class VerificationStatus:
    COMPLETED = "completed"
    PENDING = "pending"


@dataclass
class CheckoutResult:
    """Result of creating a checkout session."""
    session_id: str
    checkout_url: Optional[str]


@dataclass
class PaymentVerificationResult:
    """Outcome of confirming a checkout session."""
    status: str
    session_id: str
    payment_status: Optional[str] = None
    plan_id: Optional[str] = None
    subscription_ref: Optional[str] = None
    customer_email: Optional[str] = None
    amount_total: Optional[float] = None
    expires_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == VerificationStatus.COMPLETED


@dataclass
class CancellationResult:
    """Result of scheduling a cancellation."""
    ends_at: Optional[datetime]
    record: SubscriptionRecord


class BillingServiceError(Exception):
    """Base exception for billing service errors."""
    pass


class AccountNotFoundError(BillingServiceError):
    """Account does not exist."""
    pass


class CheckoutError(BillingServiceError):
    """Checkout request is incomplete."""
    pass


class SessionOwnershipError(BillingServiceError):
    """Checkout session was started by a different account."""

    def __init__(self, session_id: str):
        super().__init__("Checkout session does not belong to this account")
        self.session_id = session_id


class NoProviderSubscriptionError(BillingServiceError):
    """Account has no provider-backed subscription to act on."""
    pass


class NoBillingCustomerError(BillingServiceError):
    """Account has no billing provider customer."""
    pass


def subscription_status(
    subscription: ProviderSubscription,
    existing: Optional[SubscriptionRecord],
    observed_at: datetime,
) -> Tuple[SubscriptionStatus, Optional[datetime]]:
    """
    Local status and cancellation time for a provider subscription.

    Only an "active" subscription without a scheduled cancellation is
    active locally. A subscription set to cancel at period end is cancelled
    with access running on until expires_at, and the first recorded
    cancellation time is kept.
    """
    if subscription.status == SubscriptionStatus.ACTIVE.value and not subscription.cancel_at_period_end:
        return SubscriptionStatus.ACTIVE, None

    cancelled_at = (
        (existing.cancelled_at if existing else None)
        or subscription.canceled_at
        or observed_at
    )
    return SubscriptionStatus.CANCELLED, cancelled_at


def premium_record_from_subscription(
    account_id: str,
    subscription: ProviderSubscription,
    observed_at: datetime,
    existing: Optional[SubscriptionRecord] = None,
    plan_id: Optional[str] = None,
    customer_ref: Optional[str] = None,
) -> SubscriptionRecord:
    """
    Full premium record for a paid provider subscription.

    Always a complete record so that concurrent writers cannot leave a
    mix of two transitions behind.
    """
    status, cancelled_at = subscription_status(subscription, existing, observed_at)
    return SubscriptionRecord(
        account_id=account_id,
        tier=SubscriptionTier.PREMIUM,
        status=status,
        expires_at=subscription.current_period_end,
        billing_period=subscription.billing_period,
        plan_id=plan_id or subscription.metadata.get("plan_id") or PREMIUM_PLAN_ID,
        provider_customer_ref=customer_ref or subscription.customer_ref,
        provider_subscription_ref=subscription.id,
        cancelled_at=cancelled_at,
    )


def keep_admin_grant(existing: SubscriptionRecord, customer_ref: Optional[str]) -> SubscriptionRecord:
    """
    Admin-granted record with only the billing customer attached.

    The provider subscription reference is not stored, so the permanent
    grant is never reconciled against (or downgraded by) the provider.
    """
    if not customer_ref or customer_ref == existing.provider_customer_ref:
        return existing
    return existing.with_changes(provider_customer_ref=customer_ref)


class BillingService:
    """
    Service for checkout and subscription management.

    Usage:
        service = BillingService(subscriptions, accounts, billing_client)
        result = await service.verify_payment(session_id, account_id)
    """

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        accounts: AccountRepository,
        billing_client: StripeBillingClient,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.subscriptions = subscriptions
        self.accounts = accounts
        self.billing_client = billing_client
        self._clock = clock

    async def create_checkout_session(
        self,
        account_id: str,
        plan_id: str,
        price_ref: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutResult:
        """
        Create a provider-hosted checkout for a subscription plan.

        Args:
            account_id: Account from the verified token
            plan_id: Commercial plan being purchased
            price_ref: Provider price id
            success_url: Redirect after payment (session id is appended)
            cancel_url: Redirect when the user abandons checkout

        Raises:
            AccountNotFoundError: Account does not exist
            CheckoutError: plan_id or price_ref missing
            BillingProviderError: Provider rejected or failed the request
        """
        if not plan_id or not price_ref:
            raise CheckoutError("plan_id and price_ref are required")

        account = self.accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")

        session = await self.billing_client.create_checkout_session(
            account_id=account_id,
            plan_id=plan_id,
            price_ref=price_ref,
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=account.email,
        )

        logger.info("Checkout session created", extra={
            "account_id": account_id,
            "plan_id": plan_id,
            "session_id": session.id
        })

        return CheckoutResult(session_id=session.id, checkout_url=session.url)

    async def verify_payment(self, session_id: str, account_id: str) -> PaymentVerificationResult:
        """
        Confirm a checkout session and upgrade the account when it is paid.

        The session is always re-read from the provider. A session whose
        recorded originating account differs from account_id is rejected.

        Raises:
            SessionOwnershipError: Session belongs to a different account
            BillingProviderError: Provider lookup failed
        """
        session = await self.billing_client.retrieve_checkout_session(session_id)

        if session.originating_account_id != account_id:
            logger.warning("Checkout session ownership mismatch", extra={
                "session_id": session_id,
                "account_id": account_id,
                "session_account_id": session.originating_account_id
            })
            raise SessionOwnershipError(session_id)

        if not session.is_paid:
            logger.info("Checkout session not paid yet", extra={
                "session_id": session_id,
                "account_id": account_id,
                "payment_status": session.payment_status
            })
            return PaymentVerificationResult(
                status=VerificationStatus.PENDING,
                session_id=session_id,
                payment_status=session.payment_status,
            )

        record = None
        if session.is_subscription:
            record = await self.apply_paid_checkout(session)

        return PaymentVerificationResult(
            status=VerificationStatus.COMPLETED,
            session_id=session_id,
            payment_status=session.payment_status,
            plan_id=session.plan_id,
            subscription_ref=session.subscription_ref,
            customer_email=session.customer_email,
            amount_total=session.amount_total / 100 if session.amount_total is not None else None,
            expires_at=record.expires_at if record else None,
        )

    async def apply_paid_checkout(self, session: ProviderCheckoutSession) -> SubscriptionRecord:
        """
        Upgrade the originating account of a paid subscription checkout.

        Shared by payment polling and the checkout.session.completed webhook.
        A re-confirmation after cancellation keeps the cancellation, and an
        admin grant is never replaced by a provider subscription.
        """
        subscription = session.subscription
        if subscription is None:
            if not session.subscription_ref:
                raise CheckoutError(f"Checkout session {session.id} has no subscription")
            subscription = await self.billing_client.retrieve_subscription(session.subscription_ref)

        existing = self.subscriptions.find(session.originating_account_id)
        if existing is not None and existing.is_admin_granted:
            record = keep_admin_grant(existing, session.customer_ref or subscription.customer_ref)
            if record is not existing:
                self.subscriptions.upsert(record)
            logger.info("Checkout confirmed for admin-granted account, grant kept", extra={
                "account_id": record.account_id,
                "provider_subscription_ref": subscription.id
            })
            return record

        record = premium_record_from_subscription(
            account_id=session.originating_account_id,
            subscription=subscription,
            observed_at=self._clock(),
            existing=existing,
            plan_id=session.plan_id,
            customer_ref=session.customer_ref,
        )
        self.subscriptions.upsert(record)

        logger.info("Premium subscription activated", extra={
            "account_id": record.account_id,
            "plan_id": record.plan_id,
            "provider_subscription_ref": record.provider_subscription_ref,
            "expires_at": record.expires_at.isoformat() if record.expires_at else None
        })
        return record

    def _provider_backed_record(self, account_id: str) -> SubscriptionRecord:
        record = self.subscriptions.find(account_id)
        if record is None or not record.provider_subscription_ref:
            raise NoProviderSubscriptionError(f"Account {account_id} has no billing subscription")
        return record

    async def cancel(self, account_id: str) -> CancellationResult:
        """
        Cancel at the end of the current billing period.

        Access continues until ends_at.

        Raises:
            NoProviderSubscriptionError: Nothing to cancel
            BillingProviderError: Provider update failed (nothing written)
        """
        record = self._provider_backed_record(account_id)

        live = await self.billing_client.set_cancel_at_period_end(
            record.provider_subscription_ref, True
        )

        updated = record.with_changes(
            status=SubscriptionStatus.CANCELLED,
            cancelled_at=record.cancelled_at or self._clock(),
            expires_at=live.current_period_end or record.expires_at,
        )
        self.subscriptions.upsert(updated)

        logger.info("Subscription cancelled at period end", extra={
            "account_id": account_id,
            "ends_at": updated.expires_at.isoformat() if updated.expires_at else None
        })

        return CancellationResult(ends_at=updated.expires_at, record=updated)

    async def reactivate(self, account_id: str) -> SubscriptionRecord:
        """
        Undo a pending cancellation.

        Raises:
            NoProviderSubscriptionError: Nothing to reactivate, or the
                subscription has already ended at the provider
            BillingProviderError: Provider update failed (nothing written)
        """
        record = self._provider_backed_record(account_id)

        live = await self.billing_client.set_cancel_at_period_end(
            record.provider_subscription_ref, False
        )
        if not live.is_live:
            raise NoProviderSubscriptionError(
                f"Subscription {record.provider_subscription_ref} has already ended"
            )

        updated = record.with_changes(
            tier=SubscriptionTier.PREMIUM,
            status=SubscriptionStatus.ACTIVE,
            cancelled_at=None,
            expires_at=live.current_period_end or record.expires_at,
        )
        self.subscriptions.upsert(updated)

        logger.info("Subscription reactivated", extra={"account_id": account_id})
        return updated

    async def create_portal_session(self, account_id: str, return_url: str) -> str:
        """
        Create a customer portal session.

        Raises:
            NoBillingCustomerError: Account never completed a checkout
        """
        record = self.subscriptions.find(account_id)
        if record is None or not record.provider_customer_ref:
            raise NoBillingCustomerError(f"Account {account_id} has no billing customer")

        return await self.billing_client.create_portal_session(
            record.provider_customer_ref, return_url
        )

    async def update_payment_method(self, account_id: str, payment_method_id: str) -> None:
        """
        Make payment_method_id the card charged for future renewals.

        Raises:
            CheckoutError: payment_method_id missing
            NoBillingCustomerError: Account never completed a checkout
            BillingProviderError: Provider rejected the payment method
        """
        if not payment_method_id:
            raise CheckoutError("payment_method_id is required")

        record = self.subscriptions.find(account_id)
        if record is None or not record.provider_customer_ref:
            raise NoBillingCustomerError(f"Account {account_id} has no billing customer")

        await self.billing_client.update_default_payment_method(
            record.provider_customer_ref, payment_method_id
        )

        logger.info("Default payment method updated", extra={
            "account_id": account_id,
            "provider_customer_ref": record.provider_customer_ref
        })

    def list_payment_history(self, account_id: str, limit: int = 100) -> List[PaymentEntry]:
        return self.subscriptions.list_payments(account_id, limit=limit)
