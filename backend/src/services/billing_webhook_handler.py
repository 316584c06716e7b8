"""
Billing webhook handler with idempotency support.

Processes Stripe webhooks with:
- Signature verification before anything is trusted
- Event deduplication using the Stripe event ID
- Full-record upserts derived only from event content, so a redelivered
  event always produces the same record
- Unknown event types acknowledged and ignored
"""

import logging
from typing import Optional, Dict, Callable, Awaitable, Union
from dataclasses import dataclass

from src.integrations.stripe.billing_client import (
    StripeBillingClient,
    ProviderSubscription,
    ProviderCheckoutSession,
    ProviderEvent,
)
from src.models.payment_history import PaymentEntry
from src.models.subscription import (
    SubscriptionRecord,
    SubscriptionTier,
    SubscriptionStatus,
    PREMIUM_PLAN_ID,
)
from src.repositories.subscription_repository import SubscriptionRepository
from src.services.billing_service import (
    BillingService,
    keep_admin_grant,
    subscription_status,
)

logger = logging.getLogger(__name__)


@dataclass
class WebhookProcessingResult:
    """Result of webhook processing."""
    processed: bool
    message: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    account_id: Optional[str] = None
    skipped_reason: Optional[str] = None
    error: Optional[str] = None


class BillingWebhookHandler:
    """
    Handler for Stripe billing webhooks with idempotency.

    Ensures each event is applied once using the Stripe event ID, and that
    applying it again would not change the outcome anyway.
    """

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        billing_client: StripeBillingClient,
        billing_service: BillingService,
    ):
        self.subscriptions = subscriptions
        self.billing_client = billing_client
        self.billing_service = billing_service

        self._handlers: Dict[str, Callable[[ProviderEvent], Awaitable[WebhookProcessingResult]]] = {
            "customer.subscription.created": self._handle_subscription_updated,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "payment_intent.succeeded": self._handle_payment_succeeded,
            "checkout.session.completed": self._handle_checkout_completed,
        }

    async def handle_webhook_event(
        self,
        raw_payload: Union[bytes, str],
        signature: Optional[str],
    ) -> WebhookProcessingResult:
        """
        Verify and apply one webhook delivery.

        Args:
            raw_payload: Request body exactly as received
            signature: Stripe-Signature header

        Returns:
            WebhookProcessingResult

        Raises:
            WebhookSignatureError: Delivery is not authentic; nothing is written
        """
        event = self.billing_client.construct_event(raw_payload, signature)

        if self.subscriptions.is_processed_event(event.id):
            logger.info("Duplicate webhook skipped", extra={
                "event_id": event.id,
                "event_type": event.type
            })
            return WebhookProcessingResult(
                processed=False,
                message="Duplicate webhook - already processed",
                event_id=event.id,
                event_type=event.type,
                skipped_reason="duplicate"
            )

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("Unhandled webhook event type ignored", extra={
                "event_id": event.id,
                "event_type": event.type
            })
            return WebhookProcessingResult(
                processed=False,
                message=f"Ignored event type: {event.type}",
                event_id=event.id,
                event_type=event.type,
                skipped_reason="unhandled_event_type"
            )

        result = await handler(event)
        result.event_id = event.id
        result.event_type = event.type

        self.subscriptions.record_event(event.id, event.type, event.payload)

        logger.info("Webhook processed", extra={
            "event_id": event.id,
            "event_type": event.type,
            "processed": result.processed,
            "account_id": result.account_id
        })
        return result

    async def _handle_subscription_updated(self, event: ProviderEvent) -> WebhookProcessingResult:
        """
        Apply customer.subscription.created / updated.

        The account is taken from the subscription metadata written at
        checkout; an unattributable event is dropped.
        """
        subscription = ProviderSubscription.from_stripe(event.data_object)
        account_id = subscription.metadata.get("account_id")

        if not account_id:
            logger.warning("Subscription event has no account reference", extra={
                "event_id": event.id,
                "provider_subscription_ref": subscription.id
            })
            return WebhookProcessingResult(
                processed=False,
                message="Subscription metadata has no account reference",
                error="missing_account_reference"
            )

        existing = self.subscriptions.find(account_id)

        if existing is not None and existing.is_admin_granted:
            record = keep_admin_grant(existing, subscription.customer_ref)
            if record is not existing:
                self.subscriptions.upsert(record)
            logger.info("Subscription event for admin-granted account, grant kept", extra={
                "event_id": event.id,
                "account_id": account_id,
                "provider_subscription_ref": subscription.id,
                "provider_status": subscription.status
            })
            return WebhookProcessingResult(
                processed=False,
                message="Account has a permanent admin grant",
                account_id=account_id,
                skipped_reason="admin_granted"
            )

        status, cancelled_at = subscription_status(subscription, existing, event.created)

        expires_at = subscription.current_period_end
        if subscription.ended_at and (expires_at is None or subscription.ended_at < expires_at):
            expires_at = subscription.ended_at

        plan_id = subscription.metadata.get("plan_id")
        if not plan_id and existing and existing.tier == SubscriptionTier.PREMIUM:
            plan_id = existing.plan_id

        record = SubscriptionRecord(
            account_id=account_id,
            tier=SubscriptionTier.PREMIUM,
            status=status,
            expires_at=expires_at,
            billing_period=subscription.billing_period,
            plan_id=plan_id or PREMIUM_PLAN_ID,
            provider_customer_ref=subscription.customer_ref,
            provider_subscription_ref=subscription.id,
            cancelled_at=cancelled_at,
        )
        self.subscriptions.upsert(record)

        return WebhookProcessingResult(
            processed=True,
            message=f"Subscription {status.value}",
            account_id=account_id
        )

    async def _handle_subscription_deleted(self, event: ProviderEvent) -> WebhookProcessingResult:
        """
        Apply customer.subscription.deleted.

        Matched by provider subscription reference: metadata is not
        guaranteed on deletion events.
        """
        subscription = ProviderSubscription.from_stripe(event.data_object)
        record = self.subscriptions.find_by_provider_subscription_ref(subscription.id)

        if record is None:
            logger.warning("Deleted subscription not found locally", extra={
                "event_id": event.id,
                "provider_subscription_ref": subscription.id
            })
            return WebhookProcessingResult(
                processed=False,
                message="Subscription not found",
                error="subscription_not_found"
            )

        ended_at = subscription.ended_at or subscription.canceled_at or event.created
        expires_at = record.expires_at
        if expires_at is None or expires_at > ended_at:
            expires_at = ended_at

        updated = record.with_changes(
            status=SubscriptionStatus.CANCELLED,
            cancelled_at=record.cancelled_at or subscription.canceled_at or event.created,
            expires_at=expires_at,
        )
        self.subscriptions.upsert(updated)

        return WebhookProcessingResult(
            processed=True,
            message="Subscription cancelled",
            account_id=record.account_id
        )

    async def _handle_payment_succeeded(self, event: ProviderEvent) -> WebhookProcessingResult:
        """Append payment_intent.succeeded to the payment log (never touches the subscription)."""
        payment = event.data_object
        metadata = payment.get("metadata") or {}
        account_id = metadata.get("account_id")

        if not account_id and payment.get("customer"):
            record = self.subscriptions.find_by_provider_customer_ref(payment["customer"])
            account_id = record.account_id if record else None

        if not account_id:
            logger.warning("Payment event cannot be attributed to an account", extra={
                "event_id": event.id,
                "payment_ref": payment.get("id")
            })
            return WebhookProcessingResult(
                processed=False,
                message="Payment has no account reference",
                error="missing_account_reference"
            )

        entry = PaymentEntry(
            account_id=account_id,
            provider_payment_ref=payment["id"],
            amount=payment.get("amount_received") or payment.get("amount") or 0,
            currency=(payment.get("currency") or "").upper(),
            completed_at=event.created,
        )
        self.subscriptions.append_payment(entry)

        return WebhookProcessingResult(
            processed=True,
            message="Payment recorded",
            account_id=account_id
        )

    async def _handle_checkout_completed(self, event: ProviderEvent) -> WebhookProcessingResult:
        """Apply a paid subscription checkout (asynchronous confirmation path)."""
        session = ProviderCheckoutSession.from_stripe(event.data_object)

        if not session.is_paid or not session.is_subscription:
            return WebhookProcessingResult(
                processed=False,
                message="Checkout session is not a paid subscription",
                skipped_reason="not_paid_subscription"
            )

        if not session.originating_account_id:
            logger.warning("Checkout session has no account reference", extra={
                "event_id": event.id,
                "session_id": session.id
            })
            return WebhookProcessingResult(
                processed=False,
                message="Checkout session has no account reference",
                error="missing_account_reference"
            )

        record = await self.billing_service.apply_paid_checkout(session)

        return WebhookProcessingResult(
            processed=True,
            message="Premium subscription activated",
            account_id=record.account_id
        )


def get_webhook_handler(
    subscriptions: SubscriptionRepository,
    billing_client: StripeBillingClient,
    billing_service: BillingService,
) -> BillingWebhookHandler:
    """
    Factory function to create a BillingWebhookHandler.

    Returns:
        Configured BillingWebhookHandler instance
    """
    return BillingWebhookHandler(subscriptions, billing_client, billing_service)
