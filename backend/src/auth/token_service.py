"""
Application session tokens.

After Google sign-in the backend issues its own HS256 JWT; every other
request authenticates with it. Claims:
- sub: account id
- email: account email
- is_admin: whether the email is on the admin allow-list
- iat / exp: issue and expiry timestamps
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta

import jwt
from jwt.exceptions import InvalidTokenError, ExpiredSignatureError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class TokenError(Exception):
    """Raised when an application token is missing, expired or invalid."""

    def __init__(self, message: str, error_code: str = "invalid_token"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


@dataclass(frozen=True)
class AuthenticatedAccount:
    """The caller, as established by a verified application token."""
    account_id: str
    email: str
    is_admin: bool = False


class TokenService:
    """Issues and verifies application JWTs."""

    def __init__(self, secret: str, expiry_days: int = 7):
        if not secret:
            raise ValueError("secret is required")
        self._secret = secret
        self._expiry = timedelta(days=expiry_days)

    def issue(self, account_id: str, email: str, is_admin: bool = False) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": account_id,
            "email": email,
            "is_admin": is_admin,
            "iat": now,
            "exp": now + self._expiry,
        }
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> AuthenticatedAccount:
        """
        Verify a token and return the account it identifies.

        Raises:
            TokenError: If the token is missing, expired or tampered with
        """
        if not token:
            raise TokenError("Token is required", error_code="missing_token")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "exp", "iat"]},
            )
        except ExpiredSignatureError:
            raise TokenError("Token has expired", error_code="token_expired")
        except InvalidTokenError as e:
            logger.warning(f"Invalid application token: {e}")
            raise TokenError("Invalid token")

        return AuthenticatedAccount(
            account_id=claims["sub"],
            email=claims.get("email", ""),
            is_admin=bool(claims.get("is_admin", False)),
        )
