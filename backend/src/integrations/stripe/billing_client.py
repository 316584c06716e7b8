"""
Stripe client for subscription checkout and reconciliation.

Stripe is the source of truth for payment state. This client exposes the
handful of objects the entitlement engine reads (subscriptions, checkout
sessions, webhook events) as small typed results so that callers never
touch raw StripeObjects.

The API key is passed per request; the module-level stripe.api_key is
never set, so several clients (and test doubles) can coexist.

Documentation: https://docs.stripe.com/api
"""

import json
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

import stripe

from src.models.subscription import BillingPeriod

logger = logging.getLogger(__name__)

# Subscription states Stripe reports for a subscription that grants access
LIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})

DEFAULT_TIMEOUT_SECONDS = 10.0

# Signed webhook timestamps older than this are rejected
WEBHOOK_TOLERANCE_SECONDS = 300

INTERVAL_TO_BILLING_PERIOD = {
    "month": BillingPeriod.MONTHLY,
    "year": BillingPeriod.YEARLY,
}


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class BillingProviderUnavailableError(BillingProviderError):
    """Provider timed out, was unreachable, rate limited us or failed server side."""
    pass


class BillingObjectNotFoundError(BillingProviderError):
    """Requested provider object does not exist."""
    pass


class WebhookSignatureError(BillingProviderError):
    """Webhook payload could not be authenticated."""
    pass


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a StripeObject or plain dict, tolerating absence."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, IndexError, TypeError):
        return default
    return default if value is None else value


def _from_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _ref(value: Any) -> Optional[str]:
    """Stripe returns either an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


def billing_period_for_interval(interval: Optional[str]) -> BillingPeriod:
    """Map a Stripe recurring interval to a billing period (defaults to monthly)."""
    return INTERVAL_TO_BILLING_PERIOD.get((interval or "").lower(), BillingPeriod.MONTHLY)


@dataclass
class ProviderSubscription:
    """Represents a Stripe Subscription from the API."""
    id: str
    status: str
    customer_ref: Optional[str] = None
    current_period_end: Optional[datetime] = None
    interval: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_SUBSCRIPTION_STATUSES

    @property
    def billing_period(self) -> BillingPeriod:
        return billing_period_for_interval(self.interval)

    @classmethod
    def from_stripe(cls, obj: Any) -> "ProviderSubscription":
        """
        Build from a Stripe subscription object or its webhook dict form.

        Newer API versions moved current_period_end onto subscription items,
        so the first item is consulted when the top-level field is absent.
        """
        items = _field(_field(obj, "items"), "data", []) or []
        first_item = items[0] if items else None

        period_end = _field(obj, "current_period_end")
        if period_end is None:
            period_end = _field(first_item, "current_period_end")

        price = _field(first_item, "price") or _field(first_item, "plan")
        interval = _field(_field(price, "recurring"), "interval") or _field(price, "interval")

        return cls(
            id=_field(obj, "id"),
            status=_field(obj, "status", ""),
            customer_ref=_ref(_field(obj, "customer")),
            current_period_end=_from_timestamp(period_end),
            interval=interval,
            metadata=dict(_field(obj, "metadata", {}) or {}),
            cancel_at_period_end=bool(_field(obj, "cancel_at_period_end", False)),
            canceled_at=_from_timestamp(_field(obj, "canceled_at")),
            ended_at=_from_timestamp(_field(obj, "ended_at")),
        )


@dataclass
class ProviderCheckoutSession:
    """Represents a Stripe Checkout Session."""
    id: str
    url: Optional[str] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    mode: Optional[str] = None
    client_reference_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    customer_ref: Optional[str] = None
    customer_email: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    subscription_ref: Optional[str] = None
    subscription: Optional[ProviderSubscription] = None

    @property
    def originating_account_id(self) -> Optional[str]:
        """Account that created the session, as recorded server side."""
        return self.client_reference_id or self.metadata.get("account_id")

    @property
    def plan_id(self) -> Optional[str]:
        return self.metadata.get("plan_id")

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    @property
    def is_subscription(self) -> bool:
        return self.mode == "subscription"

    @classmethod
    def from_stripe(cls, obj: Any) -> "ProviderCheckoutSession":
        subscription = _field(obj, "subscription")
        expanded = subscription if subscription is not None and not isinstance(subscription, str) else None
        customer = _field(obj, "customer")

        return cls(
            id=_field(obj, "id"),
            url=_field(obj, "url"),
            status=_field(obj, "status"),
            payment_status=_field(obj, "payment_status"),
            mode=_field(obj, "mode"),
            client_reference_id=_field(obj, "client_reference_id"),
            metadata=dict(_field(obj, "metadata", {}) or {}),
            customer_ref=_ref(customer),
            customer_email=(
                _field(_field(obj, "customer_details"), "email")
                or _field(obj, "customer_email")
                or (_field(customer, "email") if not isinstance(customer, str) else None)
            ),
            amount_total=_field(obj, "amount_total"),
            currency=_field(obj, "currency"),
            subscription_ref=_ref(subscription),
            subscription=ProviderSubscription.from_stripe(expanded) if expanded is not None else None,
        )


@dataclass
class ProviderEvent:
    """A verified webhook event."""
    id: str
    type: str
    created: datetime
    data_object: Dict[str, Any]
    payload: Dict[str, Any] = field(default_factory=dict)


class StripeBillingClient:
    """
    Client for Stripe Billing operations.

    Handles:
    - Reading and updating subscriptions
    - Creating and re-reading checkout sessions
    - Customer portal sessions and the default payment method
    - Webhook signature verification

    Every call is bounded by timeout_seconds; a timeout is reported as
    BillingProviderUnavailableError like any other transient failure.
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        if not api_key:
            raise ValueError("api_key is required")
        if not webhook_secret:
            raise ValueError("webhook_secret is required")

        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds

    async def _call(self, operation: str, awaitable, **context) -> Any:
        """
        Await a Stripe SDK call under the client timeout and translate errors.

        Raises:
            BillingObjectNotFoundError: Resource missing
            BillingProviderUnavailableError: Timeout, connection, rate limit or 5xx
            BillingProviderError: Any other Stripe error
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Stripe call timed out", extra={
                "operation": operation,
                "timeout_seconds": self.timeout_seconds,
                **context
            })
            raise BillingProviderUnavailableError(
                f"Billing provider timed out during {operation}",
                code="timeout"
            )
        except stripe.InvalidRequestError as e:
            message = getattr(e, "user_message", None) or str(e)
            if e.code == "resource_missing" or e.http_status == 404:
                logger.info("Stripe object not found", extra={"operation": operation, **context})
                raise BillingObjectNotFoundError(message, code=e.code, status_code=404)
            logger.error("Stripe rejected request", extra={
                "operation": operation,
                "code": e.code,
                "error": message,
                **context
            })
            raise BillingProviderError(message, code=e.code, status_code=e.http_status)
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            logger.warning("Stripe unavailable", extra={
                "operation": operation,
                "error": str(e),
                **context
            })
            raise BillingProviderUnavailableError(
                getattr(e, "user_message", None) or str(e),
                code=getattr(e, "code", None),
                status_code=getattr(e, "http_status", None)
            )
        except stripe.StripeError as e:
            status_code = getattr(e, "http_status", None)
            message = getattr(e, "user_message", None) or str(e)
            logger.error("Stripe API error", extra={
                "operation": operation,
                "status_code": status_code,
                "error": message,
                **context
            })
            if status_code is not None and status_code >= 500:
                raise BillingProviderUnavailableError(message, code=e.code, status_code=status_code)
            raise BillingProviderError(message, code=e.code, status_code=status_code)

    async def retrieve_subscription(self, subscription_ref: str) -> ProviderSubscription:
        """Fetch the live state of a subscription."""
        obj = await self._call(
            "retrieve_subscription",
            stripe.Subscription.retrieve_async(subscription_ref, api_key=self._api_key),
            subscription_ref=subscription_ref
        )
        return ProviderSubscription.from_stripe(obj)

    async def set_cancel_at_period_end(self, subscription_ref: str, cancel: bool) -> ProviderSubscription:
        """
        Schedule (or unschedule) cancellation at the end of the current period.

        The subscription keeps billing-period access either way; Stripe ends it
        at current_period_end when cancel is True.
        """
        logger.info("Updating Stripe cancel_at_period_end", extra={
            "subscription_ref": subscription_ref,
            "cancel_at_period_end": cancel
        })
        obj = await self._call(
            "set_cancel_at_period_end",
            stripe.Subscription.modify_async(
                subscription_ref,
                cancel_at_period_end=cancel,
                api_key=self._api_key
            ),
            subscription_ref=subscription_ref
        )
        return ProviderSubscription.from_stripe(obj)

    async def create_checkout_session(
        self,
        account_id: str,
        plan_id: str,
        price_ref: str,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
    ) -> ProviderCheckoutSession:
        """
        Create a hosted subscription checkout.

        account_id and plan_id are written to client_reference_id and to the
        metadata of both the session and the resulting subscription, so that
        confirmation (polling or webhook) can be attributed server side.
        """
        metadata = {"account_id": account_id, "plan_id": plan_id}
        separator = "&" if "?" in success_url else "?"

        params: Dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_ref, "quantity": 1}],
            "success_url": f"{success_url}{separator}session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": cancel_url,
            "client_reference_id": account_id,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
            "allow_promotion_codes": True,
            "billing_address_collection": "required",
        }
        if customer_email:
            params["customer_email"] = customer_email

        logger.info("Creating Stripe checkout session", extra={
            "account_id": account_id,
            "plan_id": plan_id,
            "price_ref": price_ref
        })
        obj = await self._call(
            "create_checkout_session",
            stripe.checkout.Session.create_async(api_key=self._api_key, **params),
            account_id=account_id
        )
        return ProviderCheckoutSession.from_stripe(obj)

    async def retrieve_checkout_session(self, session_id: str) -> ProviderCheckoutSession:
        """Re-read a checkout session with its subscription and customer expanded."""
        obj = await self._call(
            "retrieve_checkout_session",
            stripe.checkout.Session.retrieve_async(
                session_id,
                expand=["subscription", "customer"],
                api_key=self._api_key
            ),
            session_id=session_id
        )
        return ProviderCheckoutSession.from_stripe(obj)

    async def create_portal_session(self, customer_ref: str, return_url: str) -> str:
        """Create a customer portal session and return its URL."""
        obj = await self._call(
            "create_portal_session",
            stripe.billing_portal.Session.create_async(
                customer=customer_ref,
                return_url=return_url,
                api_key=self._api_key
            ),
            customer_ref=customer_ref
        )
        return _field(obj, "url")

    async def update_default_payment_method(self, customer_ref: str, payment_method_id: str) -> None:
        """
        Attach a payment method to the customer and make it the invoice default.

        Future renewals of every subscription of the customer are charged to it.
        """
        logger.info("Updating Stripe default payment method", extra={
            "customer_ref": customer_ref,
            "payment_method_id": payment_method_id
        })
        await self._call(
            "attach_payment_method",
            stripe.PaymentMethod.attach_async(
                payment_method_id,
                customer=customer_ref,
                api_key=self._api_key
            ),
            customer_ref=customer_ref
        )
        await self._call(
            "set_default_payment_method",
            stripe.Customer.modify_async(
                customer_ref,
                invoice_settings={"default_payment_method": payment_method_id},
                api_key=self._api_key
            ),
            customer_ref=customer_ref
        )

    def construct_event(self, payload: Union[bytes, str], signature: Optional[str]) -> ProviderEvent:
        """
        Verify a webhook delivery and parse it.

        Args:
            payload: Raw request body exactly as received
            signature: Value of the Stripe-Signature header

        Raises:
            WebhookSignatureError: Missing or invalid signature, stale
                timestamp, or a body that is not a JSON event
        """
        if not signature:
            raise WebhookSignatureError("Missing webhook signature")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            logger.warning("Stripe webhook body is not UTF-8", extra={"error": str(e)})
            raise WebhookSignatureError("Webhook body is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self._webhook_secret,
                WEBHOOK_TOLERANCE_SECONDS
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("Stripe webhook signature verification failed", extra={"error": str(e)})
            raise WebhookSignatureError("Invalid webhook signature")

        try:
            event = json.loads(body)
        except json.JSONDecodeError as e:
            raise WebhookSignatureError(f"Webhook body is not valid JSON: {e}")

        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise WebhookSignatureError("Webhook body is not a Stripe event")

        created = _from_timestamp(event.get("created")) or datetime.now(timezone.utc)
        data_object = (event.get("data") or {}).get("object") or {}

        return ProviderEvent(
            id=event["id"],
            type=event["type"],
            created=created,
            data_object=data_object,
            payload=event,
        )
