"""
JWT authentication utilities
"""

from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from typing import Dict, Optional
import uuid

from agritenant.core.config import get_settings

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


def _encode(claims: Dict, expire: datetime) -> str:
    settings = get_settings()
    to_encode = dict(claims)
    to_encode.update({
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "jti": str(uuid.uuid4()),
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create JWT access token with user claims"""
    settings = get_settings()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {"sub": str(user_id), "type": ACCESS_TOKEN_TYPE}
    if email:
        claims["email"] = email
    return _encode(claims, datetime.now(timezone.utc) + expires_delta)


def create_refresh_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create long-lived refresh token"""
    settings = get_settings()
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.JWT_REFRESH_TOKEN_EXPIRE_MINUTES)
    claims = {"sub": str(user_id), "type": REFRESH_TOKEN_TYPE}
    return _encode(claims, datetime.now(timezone.utc) + expires_delta)


def decode_token(token: str, expected_type: str = ACCESS_TOKEN_TYPE) -> Optional[Dict]:
    """Decode and validate JWT token, None if invalid, expired or of the wrong type"""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != expected_type:
        return None
    return payload


def verify_token(token: str) -> Optional[str]:
    """Verify access token and return user_id if valid"""
    payload = decode_token(token)
    if payload is None:
        return None
    return payload.get("sub")
