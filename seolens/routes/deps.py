"""
deps.py — Shared route dependencies: caller identity.

  OptionalUserId — user ID from a valid Bearer token, else None (anonymous
                   callers are counted by IP only)
  RequiredUserId — same, but 401 without a valid token (admin routes)
  ClientIp       — caller IP as resolved by core.rate_limit.client_ip
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from seolens.core.rate_limit import client_ip
from seolens.core.security import user_id_from_token

# Reusable bearer extractor (does NOT auto-raise on missing token)
_bearer = HTTPBearer(auto_error=False)
CredDep = Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)]


async def _optional_user_id(credentials: CredDep) -> Optional[str]:
    """A bad or expired token is treated like no token at all."""
    if credentials is None:
        return None
    return user_id_from_token(credentials.credentials)


async def _require_user_id(credentials: CredDep) -> str:
    cred_error = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise cred_error

    user_id = user_id_from_token(credentials.credentials)
    if not user_id:
        raise cred_error
    return user_id


def _client_ip(request: Request) -> str:
    return client_ip(request)


OptionalUserId = Annotated[Optional[str], Depends(_optional_user_id)]
RequiredUserId = Annotated[str, Depends(_require_user_id)]
ClientIp = Annotated[str, Depends(_client_ip)]
