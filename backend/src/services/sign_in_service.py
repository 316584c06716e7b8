"""
Sign-in flow: verified Google identity to application session.

Steps:
1. Create or refresh the account
2. Make sure a subscription record exists (best-effort)
3. Apply the administrator override (best-effort)
4. Issue the application token
"""

import logging
from dataclasses import dataclass

from src.auth.google_verifier import VerifiedIdentity
from src.auth.token_service import TokenService
from src.models.account import AccountProfile
from src.repositories.account_repository import AccountRepository
from src.repositories.subscription_repository import (
    SubscriptionRepository,
    SubscriptionStoreError,
)
from src.services.admin_override import AdminOverrideService

logger = logging.getLogger(__name__)


@dataclass
class SignInResult:
    """Result of a completed sign-in."""
    token: str
    account: AccountProfile
    is_admin: bool


class SignInService:
    """Completes sign-in for verified identities."""

    def __init__(
        self,
        accounts: AccountRepository,
        subscriptions: SubscriptionRepository,
        admin_override: AdminOverrideService,
        token_service: TokenService,
    ):
        self.accounts = accounts
        self.subscriptions = subscriptions
        self.admin_override = admin_override
        self.token_service = token_service

    def complete_sign_in(self, identity: VerifiedIdentity) -> SignInResult:
        """
        Complete sign-in for a verified identity.

        Raises:
            SubscriptionStoreError: The account itself could not be stored.
                Entitlement provisioning failures do not raise.
        """
        account = self.accounts.upsert_from_identity(
            google_subject=identity.subject,
            email=identity.email,
            name=identity.name,
            picture=identity.picture,
        )

        try:
            self.subscriptions.create_default(account.id)
        except SubscriptionStoreError as e:
            logger.warning("Could not create default subscription on sign-in", extra={
                "account_id": account.id,
                "error": str(e)
            })

        is_admin = self.admin_override.is_admin(account.email)
        if is_admin:
            self.admin_override.provision(account.id, account.email)

        token = self.token_service.issue(account.id, account.email, is_admin=is_admin)

        logger.info("Sign-in completed", extra={
            "account_id": account.id,
            "is_admin": is_admin
        })
        return SignInResult(token=token, account=account, is_admin=is_admin)
