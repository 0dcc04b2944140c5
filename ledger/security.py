"""
Bearer token handling.

Tokens are issued by the identity service, signed with SECRET_KEY using
HS256 (HMAC-SHA256). This service only verifies them and reads three
claims:
  - "sub":        the acting user's id
  - "company_id": the tenant every query is scoped to
  - "role":       SUPERUSER, ADMIN or USER

create_access_token() exists for internal callers (scheduled jobs, tests)
that need to talk to the HTTP API with a known identity.
"""

from datetime import datetime, timedelta, timezone

from jose import jwt

from ledger.config import settings


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT access token.

    Args:
        data: Claims to encode (should include "sub", "company_id", "role").
        expires_delta: Optional lifetime; defaults to one hour.

    Returns:
        An encoded JWT string.
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=1))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
