"""
rate_limit.py — Per-minute burst limiter and client IP resolution.

Two layers protect the AI endpoints:
  - this module: slowapi (Starlette wrapper around the `limits` library)
    throttles bursts per client IP, in memory, per process;
  - services/usage_limiter.py: the MongoDB-backed daily quota shared by
    every instance.

Both key on the same client IP, resolved by client_ip(): first entry of
X-Forwarded-For when the API sits behind a proxy, else the socket peer.

Usage in routes:
    @router.post("/some-ai-endpoint")
    @limiter.limit("20/minute")
    async def my_endpoint(request: Request, payload: MyRequest):
        ...
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def client_ip(request: Request) -> str:
    """Return the caller's IP address as seen through any reverse proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return get_remote_address(request)


limiter = Limiter(key_func=client_ip)
