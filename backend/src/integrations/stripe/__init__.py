"""
Stripe integration module.
"""

from src.integrations.stripe.billing_client import (
    StripeBillingClient,
    ProviderSubscription,
    ProviderCheckoutSession,
    ProviderEvent,
    BillingProviderError,
    BillingProviderUnavailableError,
    BillingObjectNotFoundError,
    WebhookSignatureError,
)

__all__ = [
    "StripeBillingClient",
    "ProviderSubscription",
    "ProviderCheckoutSession",
    "ProviderEvent",
    "BillingProviderError",
    "BillingProviderUnavailableError",
    "BillingObjectNotFoundError",
    "WebhookSignatureError",
]
