"""
WebhookEvent model for tracking processed billing provider events.

Providers redeliver events; recording the event id lets a redelivery
short-circuit. State writes are idempotent on their own, so this table is
an optimisation and an audit trail, not a lock.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Index, func

from src.models.base import Base


class WebhookEvent(Base):
    """Processed provider webhook events."""

    __tablename__ = "webhook_events"

    provider_event_id = Column(
        String(255),
        primary_key=True,
        comment="Provider event id (e.g. evt_...)"
    )

    event_type = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Provider event type (e.g. customer.subscription.updated)"
    )

    payload_hash = Column(
        String(64),
        nullable=True,
        comment="SHA-256 hash of payload for debugging"
    )

    processed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When the event was processed"
    )

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="When the record was created"
    )

    __table_args__ = (
        Index("idx_webhook_events_processed", "processed_at"),
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent(id={self.provider_event_id}, type={self.event_type})>"
