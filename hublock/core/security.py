"""
JWT helpers. Identity is an opaque user id carried in the `sub` claim.
"""
from datetime import datetime, timedelta
from typing import Optional

from jose import jwt

from .config import settings, ACCESS_TOKEN_EXPIRE


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed access token for the given user id."""
    if expires_delta is None:
        expires_delta = ACCESS_TOKEN_EXPIRE
    now = datetime.utcnow()
    payload = {
        "sub": subject,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode and validate a token. Raises jose.JWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.ALGORITHM])
