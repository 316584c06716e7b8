"""
Authentication routes.

POST /api/auth/google exchanges a Google ID token for an application JWT.
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status, Depends
from pydantic import BaseModel, Field

from src.api.dependencies.auth import get_current_account
from src.api.dependencies.services import get_container, get_sign_in_service
from src.auth.google_verifier import IdentityVerificationError
from src.auth.token_service import AuthenticatedAccount
from src.platform.container import ServiceContainer
from src.repositories.subscription_repository import SubscriptionStoreError
from src.services.sign_in_service import SignInService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class GoogleSignInRequest(BaseModel):
    """Google ID token from the client sign-in button."""
    credential: str = Field(..., min_length=1, description="Google ID token")


class AccountResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    is_admin: bool = False


class SignInResponse(BaseModel):
    token: str
    user: AccountResponse


class VerifyResponse(BaseModel):
    valid: bool
    user: AccountResponse


@router.post("/google", response_model=SignInResponse)
async def google_sign_in(
    body: GoogleSignInRequest,
    container: ServiceContainer = Depends(get_container),
    sign_in_service: SignInService = Depends(get_sign_in_service),
):
    """
    Sign in with Google.

    Creates the account on first sign-in. Allow-listed administrators get
    permanent premium access.
    """
    # The verifier fetches Google signing keys over blocking HTTP
    loop = asyncio.get_event_loop()
    try:
        identity = await loop.run_in_executor(
            None, container.identity_verifier.verify, body.credential
        )
    except IdentityVerificationError as e:
        logger.info("Google sign-in rejected", extra={"error_code": e.error_code})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Google credential"
        )

    try:
        result = sign_in_service.complete_sign_in(identity)
    except SubscriptionStoreError as e:
        logger.error("Sign-in failed to store account", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sign-in is temporarily unavailable"
        )

    return SignInResponse(
        token=result.token,
        user=AccountResponse(
            id=result.account.id,
            email=result.account.email,
            name=result.account.name,
            picture=result.account.picture,
            is_admin=result.is_admin,
        ),
    )


@router.get("/verify", response_model=VerifyResponse)
async def verify_token(account: AuthenticatedAccount = Depends(get_current_account)):
    return VerifyResponse(
        valid=True,
        user=AccountResponse(id=account.account_id, email=account.email, is_admin=account.is_admin),
    )
