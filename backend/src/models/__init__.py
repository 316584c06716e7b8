"""
Database models for accounts, subscriptions and the payment log.

Every table hangs off the single declarative Base in src.models.base.
"""

from src.models.base import Base, TimestampMixin
from src.models.account import Account, AccountProfile
from src.models.subscription import (
    Subscription,
    SubscriptionRecord,
    SubscriptionTier,
    SubscriptionStatus,
    BillingPeriod,
    FREE_PLAN_ID,
    PREMIUM_PLAN_ID,
    ADMIN_PLAN_ID,
)
from src.models.payment_history import PaymentHistory, PaymentEntry, PaymentStatus
from src.models.webhook_event import WebhookEvent

__all__ = [
    "Base",
    "TimestampMixin",
    "Account",
    "AccountProfile",
    "Subscription",
    "SubscriptionRecord",
    "SubscriptionTier",
    "SubscriptionStatus",
    "BillingPeriod",
    "FREE_PLAN_ID",
    "PREMIUM_PLAN_ID",
    "ADMIN_PLAN_ID",
    "PaymentHistory",
    "PaymentEntry",
    "PaymentStatus",
    "WebhookEvent",
]
