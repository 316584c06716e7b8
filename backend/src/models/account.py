"""
Account model for learners signed in through Google.

CRITICAL SECURITY:
- NO PASSWORDS are stored locally - Google is the source of truth for auth
- google_subject is the unique identifier from the Google ID token
- Local id is what every other table references
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, DateTime

from src.models.base import Base, TimestampMixin, generate_uuid, as_utc


class Account(Base, TimestampMixin):
    """Local account record created on first sign-in."""

    __tablename__ = "accounts"

    id = Column(
        String(64),
        primary_key=True,
        default=generate_uuid,
        comment="Internal account id"
    )

    google_subject = Column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        comment="Google 'sub' claim - SOURCE OF TRUTH for identity"
    )

    email = Column(
        String(320),
        nullable=False,
        index=True
    )

    name = Column(String(255), nullable=True)
    picture = Column(String(1024), nullable=True)

    last_login = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last successful sign-in"
    )

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, email={self.email})>"


@dataclass(frozen=True)
class AccountProfile:
    """Account data returned to callers."""
    id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Account) -> "AccountProfile":
        return cls(
            id=row.id,
            email=row.email,
            name=row.name,
            picture=row.picture,
            created_at=as_utc(row.created_at),
            last_login=as_utc(row.last_login),
        )
