"""
Unit test for JWT authentication
"""

from datetime import timedelta

from agritenant.core.auth import (
    REFRESH_TOKEN_TYPE,
    create_access_token,
    create_refresh_token,
    decode_token,
    verify_token,
)
from agritenant.core.config import get_settings

settings = get_settings()


def test_create_access_token():
    """Test JWT token creation"""
    token = create_access_token("user-1", email="ravi@example.com", expires_delta=timedelta(hours=1))

    assert isinstance(token, str)
    payload = decode_token(token)
    assert payload["sub"] == "user-1"
    assert payload["email"] == "ravi@example.com"
    assert payload["type"] == "access"
    assert "exp" in payload
    assert "jti" in payload


def test_verify_token_returns_user_id():
    token = create_access_token("user-1")
    assert verify_token(token) == "user-1"


def test_verify_invalid_token():
    """Test token verification with invalid token"""
    assert verify_token("invalid.token.string.here") is None


def test_expired_token():
    """Test that expired tokens are rejected"""
    token = create_access_token("user-1", expires_delta=timedelta(seconds=-60))
    assert verify_token(token) is None


def test_refresh_token_is_not_an_access_token():
    refresh = create_refresh_token("user-1")

    assert verify_token(refresh) is None
    payload = decode_token(refresh, expected_type=REFRESH_TOKEN_TYPE)
    assert payload["sub"] == "user-1"


def test_token_signed_with_other_key_is_rejected():
    from jose import jwt

    forged = jwt.encode({"sub": "super-1", "type": "access"}, "not-the-key", algorithm=settings.JWT_ALGORITHM)
    assert verify_token(forged) is None
