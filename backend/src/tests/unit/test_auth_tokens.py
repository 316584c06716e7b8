"""
Tests for application tokens and Google ID token verification.

Google tokens are signed with a locally generated RSA key; the JWKS
client is replaced so no network access is needed.
"""

import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import MagicMock, patch

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt import PyJWKClientError

from src.auth.google_verifier import (
    GoogleIdentityVerifier,
    IdentityVerificationError,
)
from src.auth.token_service import TokenService, TokenError

SECRET = "unit-test-secret-with-enough-length-for-hs256"
CLIENT_ID = "test-client-id.apps.googleusercontent.com"


class TestTokenService:

    def test_issue_and_verify(self):
        service = TokenService(SECRET)

        caller = service.verify(service.issue("account-1", "learner@example.com", is_admin=True))

        assert caller.account_id == "account-1"
        assert caller.email == "learner@example.com"
        assert caller.is_admin is True

    def test_expired_token(self):
        service = TokenService(SECRET, expiry_days=-1)

        with pytest.raises(TokenError) as exc_info:
            service.verify(service.issue("account-1", "learner@example.com"))

        assert exc_info.value.error_code == "token_expired"

    def test_token_signed_with_other_secret(self):
        token = TokenService("another-secret-with-enough-length-for-hs256").issue("account-1", "a@b.c")

        with pytest.raises(TokenError) as exc_info:
            TokenService(SECRET).verify(token)

        assert exc_info.value.error_code == "invalid_token"

    def test_missing_token(self):
        with pytest.raises(TokenError) as exc_info:
            TokenService(SECRET).verify("")

        assert exc_info.value.error_code == "missing_token"

    def test_token_without_subject_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode({"email": "a@b.c", "iat": now, "exp": now + timedelta(hours=1)}, SECRET, algorithm="HS256")

        with pytest.raises(TokenError):
            TokenService(SECRET).verify(token)

    def test_secret_required(self):
        with pytest.raises(ValueError):
            TokenService("")


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def verifier(rsa_key):
    verifier = GoogleIdentityVerifier(client_id=CLIENT_ID)
    jwks_client = MagicMock()
    jwks_client.get_signing_key_from_jwt.return_value = MagicMock(key=rsa_key.public_key())
    with patch.object(verifier, "_get_jwks_client", return_value=jwks_client):
        yield verifier


def google_token(rsa_key, **overrides):
    now = datetime.now(timezone.utc)
    claims = {
        "iss": "https://accounts.google.com",
        "aud": CLIENT_ID,
        "sub": "google-sub-1",
        "email": "learner@example.com",
        "name": "Learner",
        "picture": "https://img.test/a.png",
        "iat": now,
        "exp": now + timedelta(hours=1),
    }
    claims.update(overrides)
    claims = {key: value for key, value in claims.items() if value is not None}
    return jwt.encode(claims, rsa_key, algorithm="RS256", headers={"kid": "test-key"})


class TestGoogleIdentityVerifier:

    def test_valid_token(self, verifier, rsa_key):
        identity = verifier.verify(google_token(rsa_key))

        assert identity.subject == "google-sub-1"
        assert identity.email == "learner@example.com"
        assert identity.name == "Learner"

    def test_issuer_without_scheme_accepted(self, verifier, rsa_key):
        assert verifier.verify(google_token(rsa_key, iss="accounts.google.com")).subject == "google-sub-1"

    @pytest.mark.parametrize("overrides,error_code", [
        ({"aud": "someone-else"}, "invalid_audience"),
        ({"iss": "https://evil.example.com"}, "invalid_issuer"),
        ({"email": None}, "missing_claims"),
    ])
    def test_rejected_claims(self, verifier, rsa_key, overrides, error_code):
        with pytest.raises(IdentityVerificationError) as exc_info:
            verifier.verify(google_token(rsa_key, **overrides))

        assert exc_info.value.error_code == error_code

    def test_expired_token(self, verifier, rsa_key):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = google_token(rsa_key, iat=past, exp=past + timedelta(minutes=5))

        with pytest.raises(IdentityVerificationError) as exc_info:
            verifier.verify(token)

        assert exc_info.value.error_code == "token_expired"

    def test_token_signed_by_other_key(self, verifier):
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

        with pytest.raises(IdentityVerificationError) as exc_info:
            verifier.verify(google_token(other_key))

        assert exc_info.value.error_code == "invalid_token"

    def test_jwks_failure(self, verifier, rsa_key):
        verifier._get_jwks_client().get_signing_key_from_jwt.side_effect = PyJWKClientError("unreachable")

        with pytest.raises(IdentityVerificationError) as exc_info:
            verifier.verify(google_token(rsa_key))

        assert exc_info.value.error_code == "jwks_error"

    def test_empty_token(self, verifier):
        with pytest.raises(IdentityVerificationError) as exc_info:
            verifier.verify("")

        assert exc_info.value.error_code == "missing_token"

    def test_client_id_required(self):
        with pytest.raises(IdentityVerificationError):
            GoogleIdentityVerifier(client_id="")
