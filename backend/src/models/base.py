"""
Declarative base and shared column mixins.

Provides:
- Base: single declarative base for every table
- TimestampMixin: created_at, updated_at timestamps
- generate_uuid: UUID generation for primary keys
- as_utc: normalise datetimes read back from stores without tz support
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def generate_uuid() -> str:
    """Generate a UUID4 string for use as a primary key default."""
    return str(uuid.uuid4())


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Return value as a timezone-aware UTC datetime.

    SQLite drops tzinfo on DateTime(timezone=True) columns; every value we
    write is UTC, so a naive value read back is UTC as well.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Timestamp when record was last updated"
    )
