"""
Authentication module.

Google is the identity authority for sign-in; the backend then issues its
own short-lived application JWT used on every other request.
"""

from src.auth.google_verifier import (
    GoogleIdentityVerifier,
    IdentityVerificationError,
    VerifiedIdentity,
)
from src.auth.token_service import TokenService, TokenError, AuthenticatedAccount

__all__ = [
    # Google sign-in
    "GoogleIdentityVerifier",
    "IdentityVerificationError",
    "VerifiedIdentity",
    # Application tokens
    "TokenService",
    "TokenError",
    "AuthenticatedAccount",
]
