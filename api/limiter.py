"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the routers (to
apply per-route limits with @limiter.limit()). A single shared instance means
every route shares the same counter store.

Key: the access-token user when the request carries a valid access token,
otherwise the client address. A logged-in user behind a shared NAT gets their
own budget; anonymous traffic is bucketed per IP.
"""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from auth.dependencies import bearer_token
from auth.models import TokenType
from auth.tokens import decode_token
from core.config import get_settings

_settings = get_settings()


def user_or_ip(request: Request) -> str:
    token = bearer_token(request)
    if token:
        payload = decode_token(token)
        if payload is not None and payload["type"] == TokenType.ACCESS.value:
            return f"user:{payload['user_id']}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=user_or_ip,
    default_limits=[_settings.rate_limit_default],
    enabled=_settings.rate_limit_enabled,
    storage_uri="memory://",
)
