"""
Subscription repository for data access operations.

Encapsulates all database operations for subscription records with:
- A single atomic full-record upsert as the only mutation of a record
- A distinguishable not-found condition for lazy record creation
- The append-only payment log and the processed-event ledger
"""

import hashlib
import json
import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.models.subscription import Subscription, SubscriptionRecord
from src.models.payment_history import PaymentHistory, PaymentEntry
from src.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


class SubscriptionStoreError(Exception):
    """Store unreachable or the write failed (treated as transient)."""
    pass


class SubscriptionNotFoundError(SubscriptionStoreError):
    """No subscription record exists for the requested key."""

    def __init__(self, account_id: str):
        super().__init__(f"No subscription record for account {account_id}")
        self.account_id = account_id


def _dialect_insert(db: Session):
    """Return the dialect-specific insert() that supports ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise SubscriptionStoreError(f"Unsupported database dialect for upsert: {dialect}")
    return insert


class SubscriptionRepository:
    """
    Repository for subscription data access.

    Writes commit immediately: each upsert is its own transaction, so
    concurrent writers resolve as last-writer-wins on a whole record.
    """

    def __init__(self, db_session: Session):
        """
        Initialize repository with database session.

        Args:
            db_session: SQLAlchemy database session
        """
        self.db = db_session

    def _write(self, statement, operation: str, **context) -> None:
        try:
            self.db.execute(statement)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Subscription store write failed", extra={
                "operation": operation,
                "error": str(e),
                **context
            })
            raise SubscriptionStoreError(f"{operation} failed: {e}") from e

    def get(self, account_id: str) -> SubscriptionRecord:
        """
        Get the subscription record for an account.

        Raises:
            SubscriptionNotFoundError: If the account has no record yet
            SubscriptionStoreError: If the store cannot be read
        """
        try:
            row = self.db.query(Subscription).filter(
                Subscription.account_id == account_id
            ).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise SubscriptionStoreError(f"Subscription lookup failed: {e}") from e

        if row is None:
            raise SubscriptionNotFoundError(account_id)
        return SubscriptionRecord.from_row(row)

    def find(self, account_id: str) -> Optional[SubscriptionRecord]:
        """Get the record for an account, or None if absent."""
        try:
            return self.get(account_id)
        except SubscriptionNotFoundError:
            return None

    def find_by_provider_subscription_ref(self, provider_subscription_ref: str) -> Optional[SubscriptionRecord]:
        """
        Get the record bound to a billing provider subscription.

        Args:
            provider_subscription_ref: Provider subscription id

        Returns:
            SubscriptionRecord if found, None otherwise
        """
        try:
            row = self.db.query(Subscription).filter(
                Subscription.provider_subscription_ref == provider_subscription_ref
            ).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise SubscriptionStoreError(f"Subscription lookup failed: {e}") from e

        return SubscriptionRecord.from_row(row) if row else None

    def find_by_provider_customer_ref(self, provider_customer_ref: str) -> Optional[SubscriptionRecord]:
        """Get the record bound to a billing provider customer."""
        try:
            row = self.db.query(Subscription).filter(
                Subscription.provider_customer_ref == provider_customer_ref
            ).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise SubscriptionStoreError(f"Subscription lookup failed: {e}") from e

        return SubscriptionRecord.from_row(row) if row else None

    def upsert(self, record: SubscriptionRecord) -> SubscriptionRecord:
        """
        Atomically write the whole record, keyed by account id.

        Args:
            record: Complete record to store

        Returns:
            The record as written
        """
        insert = _dialect_insert(self.db)
        values = record.to_values()
        stmt = insert(Subscription).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Subscription.account_id],
            set_={
                **{key: stmt.excluded[key] for key in values if key != "account_id"},
                "updated_at": func.now(),
            }
        )
        self._write(stmt, "upsert", account_id=record.account_id)

        logger.info("Subscription record written", extra={
            "account_id": record.account_id,
            "tier": record.tier.value,
            "status": record.status.value,
            "plan_id": record.plan_id
        })
        return record

    def create_default(self, account_id: str) -> SubscriptionRecord:
        """
        Create the free/active record if the account has none.

        An existing record is left untouched; the stored record is returned.
        """
        insert = _dialect_insert(self.db)
        stmt = insert(Subscription).values(
            **SubscriptionRecord.free(account_id).to_values()
        ).on_conflict_do_nothing(index_elements=[Subscription.account_id])
        self._write(stmt, "create_default", account_id=account_id)
        return self.get(account_id)

    def append_payment(self, entry: PaymentEntry) -> None:
        """
        Append a payment to the payment log.

        A payment reference already present is ignored, so redelivered
        events never produce a second entry.
        """
        insert = _dialect_insert(self.db)
        stmt = insert(PaymentHistory).values(**entry.to_values()).on_conflict_do_nothing(
            index_elements=[PaymentHistory.provider_payment_ref]
        )
        self._write(
            stmt,
            "append_payment",
            account_id=entry.account_id,
            provider_payment_ref=entry.provider_payment_ref
        )

    def list_payments(self, account_id: str, limit: int = 100) -> List[PaymentEntry]:
        """Get the payment log for an account, newest first."""
        try:
            rows = self.db.query(PaymentHistory).filter(
                PaymentHistory.account_id == account_id
            ).order_by(PaymentHistory.completed_at.desc()).limit(limit).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise SubscriptionStoreError(f"Payment history lookup failed: {e}") from e
        return [PaymentEntry.from_row(row) for row in rows]

    def is_processed_event(self, provider_event_id: str) -> bool:
        """Check if a provider event has already been applied."""
        try:
            existing = self.db.query(WebhookEvent).filter(
                WebhookEvent.provider_event_id == provider_event_id
            ).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise SubscriptionStoreError(f"Webhook event lookup failed: {e}") from e
        return existing is not None

    def record_event(self, provider_event_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        """Record a processed provider event."""
        payload_hash = hashlib.sha256(
            json.dumps(payload, sort_keys=True, default=str).encode()
        ).hexdigest()

        insert = _dialect_insert(self.db)
        stmt = insert(WebhookEvent).values(
            provider_event_id=provider_event_id,
            event_type=event_type,
            payload_hash=payload_hash,
        ).on_conflict_do_nothing(index_elements=[WebhookEvent.provider_event_id])
        self._write(stmt, "record_event", provider_event_id=provider_event_id)

    def ping(self) -> bool:
        """Check that the store answers queries."""
        try:
            self.db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error("Subscription store health check failed", extra={"error": str(e)})
            self.db.rollback()
            return False
