"""
Subscription model: one entitlement record per account.

CRITICAL: account_id is the upsert key. Every writer replaces the whole
record in one statement (see SubscriptionRepository.upsert), never a
partial set of columns.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, String, DateTime, Index

from src.models.base import Base, TimestampMixin, as_utc


class SubscriptionTier(str, Enum):
    """Commercial tier of an account."""
    FREE = "free"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    """Stored lifecycle status of a subscription record."""
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class BillingPeriod(str, Enum):
    """Billing period of a premium subscription."""
    MONTHLY = "monthly"
    YEARLY = "yearly"
    PERMANENT = "permanent"


# Plan ids used when the record does not carry one
FREE_PLAN_ID = "free_plan"
PREMIUM_PLAN_ID = "premium_plan"

# Sentinel plan id for administrator-granted entitlement
ADMIN_PLAN_ID = "premium_admin"


class Subscription(Base, TimestampMixin):
    """
    Persisted subscription row.

    Provider references are absent for free-tier and admin-granted accounts.
    A NULL expires_at means "never expires".
    """

    __tablename__ = "subscriptions"

    account_id = Column(
        String(64),
        primary_key=True,
        comment="Owning account (upsert key)"
    )
    tier = Column(
        String(16),
        nullable=False,
        default=SubscriptionTier.FREE.value,
        comment="free | premium"
    )
    status = Column(
        String(16),
        nullable=False,
        default=SubscriptionStatus.ACTIVE.value,
        index=True,
        comment="active | expired | cancelled"
    )
    expires_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the paid period; NULL = never expires"
    )
    billing_period = Column(
        String(16),
        nullable=True,
        comment="monthly | yearly | permanent"
    )
    plan_id = Column(
        String(100),
        nullable=True,
        comment="Opaque commercial plan identifier"
    )
    provider_customer_ref = Column(
        String(255),
        nullable=True,
        comment="Billing provider customer id"
    )
    provider_subscription_ref = Column(
        String(255),
        nullable=True,
        comment="Billing provider subscription id"
    )
    cancelled_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="When a cancellation was recorded"
    )

    __table_args__ = (
        Index("ix_subscriptions_provider_subscription", "provider_subscription_ref"),
    )

    def __repr__(self) -> str:
        return f"<Subscription(account_id={self.account_id}, tier={self.tier}, status={self.status})>"


@dataclass(frozen=True)
class SubscriptionRecord:
    """Typed, immutable view of a subscription row."""
    account_id: str
    tier: SubscriptionTier = SubscriptionTier.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    expires_at: Optional[datetime] = None
    billing_period: Optional[BillingPeriod] = None
    plan_id: Optional[str] = None
    provider_customer_ref: Optional[str] = None
    provider_subscription_ref: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def free(cls, account_id: str) -> "SubscriptionRecord":
        """Default record created on first entitlement check."""
        return cls(account_id=account_id, plan_id=FREE_PLAN_ID)

    @classmethod
    def from_row(cls, row: Subscription) -> "SubscriptionRecord":
        return cls(
            account_id=row.account_id,
            tier=SubscriptionTier(row.tier),
            status=SubscriptionStatus(row.status),
            expires_at=as_utc(row.expires_at),
            billing_period=BillingPeriod(row.billing_period) if row.billing_period else None,
            plan_id=row.plan_id,
            provider_customer_ref=row.provider_customer_ref,
            provider_subscription_ref=row.provider_subscription_ref,
            cancelled_at=as_utc(row.cancelled_at),
        )

    def to_values(self) -> dict:
        """Column values for a full-record write."""
        return {
            "account_id": self.account_id,
            "tier": self.tier.value,
            "status": self.status.value,
            "expires_at": self.expires_at,
            "billing_period": self.billing_period.value if self.billing_period else None,
            "plan_id": self.plan_id,
            "provider_customer_ref": self.provider_customer_ref,
            "provider_subscription_ref": self.provider_subscription_ref,
            "cancelled_at": self.cancelled_at,
        }

    def with_changes(self, **changes) -> "SubscriptionRecord":
        return replace(self, **changes)

    @property
    def is_admin_granted(self) -> bool:
        return self.plan_id == ADMIN_PLAN_ID and self.billing_period == BillingPeriod.PERMANENT
