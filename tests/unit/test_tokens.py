"""Bearer token verification."""

import jwt
import pytest

from bix.auth.tokens import create_access_token, verify_token
from bix.config import get_settings


class TestTokens:
    def test_roundtrip_subject(self):
        payload = verify_token(create_access_token("user-42"))
        assert payload["sub"] == "user-42"
        assert payload["type"] == "access"

    def test_expired(self):
        token = create_access_token("user-42", expires_minutes=-1)
        with pytest.raises(jwt.InvalidTokenError, match="Token has expired"):
            verify_token(token)

    def test_wrong_secret(self):
        settings = get_settings()
        token = jwt.encode(
            {"sub": "user-42", "type": "access", "iss": settings.jwt_issuer},
            "some-other-secret-that-is-long-enough",
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)

    def test_wrong_type(self):
        settings = get_settings()
        token = jwt.encode(
            {"sub": "user-42", "type": "refresh", "iss": settings.jwt_issuer},
            settings.jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError, match="Expected token type 'access'"):
            verify_token(token)

    def test_missing_subject(self):
        settings = get_settings()
        token = jwt.encode({"type": "access", "iss": settings.jwt_issuer}, settings.jwt_secret, algorithm="HS256")
        with pytest.raises(jwt.InvalidTokenError):
            verify_token(token)
