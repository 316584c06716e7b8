"""
Account repository.

Accounts are created or refreshed on sign-in and otherwise only read.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.models.account import Account, AccountProfile
from src.repositories.subscription_repository import SubscriptionStoreError

logger = logging.getLogger(__name__)


class AccountRepository:
    """Repository for account data access."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, account_id: str) -> Optional[AccountProfile]:
        """Get an account by id, or None if it does not exist."""
        row = self.db.query(Account).filter(Account.id == account_id).first()
        return AccountProfile.from_row(row) if row else None

    def exists(self, account_id: str) -> bool:
        return self.get(account_id) is not None

    def upsert_from_identity(
        self,
        google_subject: str,
        email: str,
        name: Optional[str] = None,
        picture: Optional[str] = None
    ) -> AccountProfile:
        """
        Create the account on first sign-in, refresh its profile afterwards.

        Args:
            google_subject: Verified 'sub' claim
            email: Verified email
            name: Display name
            picture: Avatar URL

        Returns:
            The stored account profile
        """
        now = datetime.now(timezone.utc)
        try:
            account = self.db.query(Account).filter(
                Account.google_subject == google_subject
            ).first()

            if account is None:
                account = Account(
                    google_subject=google_subject,
                    email=email.lower(),
                    name=name,
                    picture=picture,
                    last_login=now
                )
                self.db.add(account)
                logger.info("Account created", extra={"email": email.lower()})
            else:
                account.email = email.lower()
                account.name = name
                account.picture = picture
                account.last_login = now

            self.db.commit()
            self.db.refresh(account)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Account upsert failed", extra={"error": str(e)})
            raise SubscriptionStoreError(f"Account upsert failed: {e}") from e

        return AccountProfile.from_row(account)
