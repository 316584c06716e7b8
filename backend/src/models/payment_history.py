"""
PaymentHistory model for the immutable payment log.

CRITICAL: This table is APPEND-ONLY.
Never update or delete entries - only insert new ones. Redelivered
provider events collapse onto the same row via the unique payment reference.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, String, Integer, DateTime, Index, func

from src.models.base import Base, generate_uuid, as_utc


class PaymentStatus:
    """Payment status constants."""
    COMPLETED = "completed"


class PaymentHistory(Base):
    """
    Append-only record of successful provider payments.

    NOTE: Does not use TimestampMixin - entries are never updated.
    """

    __tablename__ = "payment_history"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    account_id = Column(
        String(64),
        nullable=False,
        index=True,
        comment="Account the payment is attributed to"
    )
    provider_payment_ref = Column(
        String(255),
        nullable=False,
        unique=True,
        comment="Billing provider payment reference (idempotency key)"
    )
    amount = Column(
        Integer,
        nullable=False,
        comment="Amount in the currency's minor unit"
    )
    currency = Column(
        String(3),
        nullable=False,
        comment="ISO 4217 currency code (upper case)"
    )
    status = Column(
        String(20),
        nullable=False,
        default=PaymentStatus.COMPLETED
    )
    completed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the provider reported the payment"
    )
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        Index("ix_payment_history_account_completed", "account_id", "completed_at"),
    )

    def __repr__(self) -> str:
        return f"<PaymentHistory(account_id={self.account_id}, ref={self.provider_payment_ref}, amount={self.amount})>"


@dataclass(frozen=True)
class PaymentEntry:
    """A payment-history entry as exchanged with services."""
    account_id: str
    provider_payment_ref: str
    amount: int
    currency: str
    completed_at: datetime
    status: str = PaymentStatus.COMPLETED

    @classmethod
    def from_row(cls, row: PaymentHistory) -> "PaymentEntry":
        return cls(
            account_id=row.account_id,
            provider_payment_ref=row.provider_payment_ref,
            amount=row.amount,
            currency=row.currency,
            completed_at=as_utc(row.completed_at),
            status=row.status,
        )

    def to_values(self) -> dict:
        return {
            "id": generate_uuid(),
            "account_id": self.account_id,
            "provider_payment_ref": self.provider_payment_ref,
            "amount": self.amount,
            "currency": self.currency.upper(),
            "status": self.status,
            "completed_at": self.completed_at or datetime.now(timezone.utc),
        }
