"""
security.py — Bearer token verification (python-jose).

The account service signs HS256 tokens whose *sub* claim is the user ID.
This API never issues tokens to clients; it only needs the user ID to
count AI usage per user. issue_token() exists for the test suite.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from seolens.core.config import settings


def issue_token(user_id: str, ttl: Optional[timedelta] = None) -> str:
    """Sign a token for *user_id* valid for *ttl* (default JWT_EXPIRY_HOURS)."""
    issued = datetime.now(tz=timezone.utc)
    claims = {
        "sub": user_id,
        "iat": issued,
        "exp": issued + (ttl or timedelta(hours=settings.jwt_expiry_hours)),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def user_id_from_token(token: str) -> Optional[str]:
    """
    The *sub* claim of a valid token.

    None for anything else: bad signature, expired, malformed, or a
    missing / non-string subject.
    """
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        return None
    return subject
