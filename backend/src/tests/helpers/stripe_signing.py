"""
Stripe webhook signing helper for testing.

Uses the same scheme Stripe uses for the Stripe-Signature header
(t=<timestamp>,v1=<hex HMAC-SHA256 of "<timestamp>.<payload>">), allowing
tests to create validly-signed webhook payloads.
"""

import hmac
import json
import time
import hashlib
import uuid
from typing import Any, Dict, Optional, Tuple

TEST_WEBHOOK_SECRET = "whsec_test_secret"


def compute_stripe_signature(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """
    Compute a Stripe-Signature header value.

    Args:
        payload: Raw webhook body bytes
        secret: Webhook signing secret
        timestamp: Unix timestamp to sign (defaults to now)

    Returns:
        Header value in Stripe's t=...,v1=... format
    """
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def create_invalid_signature() -> str:
    """A well-formed header whose signature will never verify."""
    return f"t={int(time.time())},v1={'0' * 64}"


def build_event(
    event_type: str,
    data_object: Dict[str, Any],
    event_id: Optional[str] = None,
    created: Optional[int] = None,
) -> Dict[str, Any]:
    """Build a Stripe event envelope."""
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": data_object},
    }


def signed_event(
    event: Dict[str, Any],
    secret: str = TEST_WEBHOOK_SECRET,
) -> Tuple[bytes, str]:
    """Serialize an event and sign it; returns (body, Stripe-Signature)."""
    body = json.dumps(event).encode("utf-8")
    return body, compute_stripe_signature(body, secret)


def subscription_object(
    subscription_id: str = "sub_test_123",
    status: str = "active",
    account_id: Optional[str] = "account-1",
    plan_id: Optional[str] = "premium_monthly",
    customer: str = "cus_test_123",
    current_period_end: Optional[int] = None,
    interval: str = "month",
    canceled_at: Optional[int] = None,
    ended_at: Optional[int] = None,
    cancel_at_period_end: bool = False,
) -> Dict[str, Any]:
    """Stripe subscription object as delivered in webhook payloads."""
    metadata = {}
    if account_id:
        metadata["account_id"] = account_id
    if plan_id:
        metadata["plan_id"] = plan_id

    return {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "customer": customer,
        "current_period_end": current_period_end,
        "cancel_at_period_end": cancel_at_period_end,
        "canceled_at": canceled_at,
        "ended_at": ended_at,
        "metadata": metadata,
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_test_1",
                    "price": {"id": "price_test", "recurring": {"interval": interval}},
                }
            ],
        },
    }
