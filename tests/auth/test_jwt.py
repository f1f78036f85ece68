"""Tests for JWT access-token verification."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from coremine.auth.jwt import create_access_token, verify_token
from coremine.config import get_settings


def _encode(payload: dict) -> str:
    return jwt.encode(payload, get_settings().jwt_secret, algorithm="HS256")


class TestAccessToken:
    def test_create_and_verify(self):
        payload = verify_token(create_access_token("user-42"))
        assert payload["sub"] == "user-42"
        assert payload["type"] == "access"
        assert payload["iss"] == get_settings().jwt_issuer

    def test_expired_rejected(self):
        token = create_access_token("user-42", expires_in=timedelta(seconds=-5))
        with pytest.raises(jwt.InvalidTokenError, match="expired"):
            verify_token(token)

    def test_wrong_secret_rejected(self):
        token = jwt.encode(
            {"sub": "u", "iss": get_settings().jwt_issuer, "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            "some-other-secret-that-is-long-enough",
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)

    def test_wrong_issuer_rejected(self):
        token = _encode({"sub": "u", "iss": "elsewhere", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)})
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)

    def test_missing_subject_rejected(self):
        token = _encode({"iss": get_settings().jwt_issuer, "exp": datetime.now(timezone.utc) + timedelta(minutes=5)})
        with pytest.raises(jwt.InvalidTokenError, match="subject"):
            verify_token(token)

    def test_refresh_token_rejected(self):
        token = _encode({
            "sub": "u",
            "iss": get_settings().jwt_issuer,
            "type": "refresh",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        })
        with pytest.raises(jwt.InvalidTokenError, match="access token"):
            verify_token(token)
