"""
Google ID token verifier for sign-in.

This module handles:
- Fetching and caching Google's JWKS
- ID token signature, audience, issuer and expiry validation
- Extracting the verified identity

Documentation: https://developers.google.com/identity/gsi/web/guides/verify-google-id-token
"""

import time
import logging
from dataclasses import dataclass
from typing import Optional
from threading import Lock

import jwt
from jwt import PyJWKClient, PyJWKClientError
from jwt.exceptions import (
    InvalidTokenError,
    ExpiredSignatureError,
    InvalidAudienceError,
)

logger = logging.getLogger(__name__)

GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = frozenset({"accounts.google.com", "https://accounts.google.com"})


class IdentityVerificationError(Exception):
    """Exception raised when an ID token cannot be verified."""

    def __init__(self, message: str, error_code: str = "verification_failed"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


@dataclass(frozen=True)
class VerifiedIdentity:
    """Identity asserted by a verified Google ID token."""
    subject: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None


class GoogleIdentityVerifier:
    """
    Verifies Google-issued ID tokens using JWKS.

    Usage:
        verifier = GoogleIdentityVerifier(client_id=settings.google_client_id)
        identity = verifier.verify(id_token)
    """

    JWKS_CACHE_DURATION = 3600

    # Clock skew tolerance in seconds (for exp/iat validation)
    CLOCK_SKEW_SECONDS = 60

    def __init__(self, client_id: str, jwks_url: str = GOOGLE_JWKS_URL):
        if not client_id:
            raise IdentityVerificationError(
                "GOOGLE_CLIENT_ID is required",
                error_code="config_error",
            )

        self._client_id = client_id
        self._jwks_url = jwks_url
        self._jwks_client: Optional[PyJWKClient] = None
        self._jwks_client_lock = Lock()
        self._jwks_last_refresh: float = 0

    def _get_jwks_client(self) -> PyJWKClient:
        with self._jwks_client_lock:
            now = time.time()

            if (
                self._jwks_client is None
                or now - self._jwks_last_refresh > self.JWKS_CACHE_DURATION
            ):
                self._jwks_client = PyJWKClient(
                    self._jwks_url,
                    cache_keys=True,
                    lifespan=self.JWKS_CACHE_DURATION,
                )
                self._jwks_last_refresh = now
                logger.debug("Refreshed JWKS client", extra={"jwks_url": self._jwks_url})

            return self._jwks_client

    def verify(self, id_token: str) -> VerifiedIdentity:
        """
        Verify a Google ID token and return the identity it asserts.

        Raises:
            IdentityVerificationError: If verification fails
        """
        if not id_token:
            raise IdentityVerificationError("ID token is required", error_code="missing_token")

        try:
            signing_key = self._get_jwks_client().get_signing_key_from_jwt(id_token)

            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self._client_id,
                options={"require": ["sub", "iss", "exp", "iat", "aud"]},
                leeway=self.CLOCK_SKEW_SECONDS,
            )

        except ExpiredSignatureError:
            logger.warning("Google ID token has expired")
            raise IdentityVerificationError("Token has expired", error_code="token_expired")

        except InvalidAudienceError:
            logger.warning("Google ID token audience mismatch")
            raise IdentityVerificationError("Invalid token audience", error_code="invalid_audience")

        except PyJWKClientError as e:
            logger.error(f"JWKS client error: {e}")
            raise IdentityVerificationError(
                f"Failed to fetch signing key: {e}",
                error_code="jwks_error",
            )

        except InvalidTokenError as e:
            logger.warning(f"Invalid Google ID token: {e}")
            raise IdentityVerificationError(f"Invalid token: {e}", error_code="invalid_token")

        if claims.get("iss") not in GOOGLE_ISSUERS:
            logger.warning("Invalid token issuer", extra={"iss": claims.get("iss")})
            raise IdentityVerificationError("Invalid token issuer", error_code="invalid_issuer")

        email = claims.get("email")
        if not email:
            raise IdentityVerificationError("Token has no email claim", error_code="missing_claims")

        return VerifiedIdentity(
            subject=claims["sub"],
            email=email,
            name=claims.get("name"),
            picture=claims.get("picture"),
        )
