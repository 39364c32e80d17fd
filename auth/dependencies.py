"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Every protected route declares which token types it accepts:

    require_token(TokenType.OTP_VERIFICATION)   -- verify-otp, resend-otp
    require_token(TokenType.ACCESS)             -- everything else

Rejection rules (checked in order):
  1. No "Authorization: Bearer <token>" header        -> 401
  2. Bad signature, expired, or missing claims        -> 401
  3. Unrecognised type, or a refresh_token as bearer  -> 401
  4. Recognised type not accepted by this route       -> 403

So an otp_verification token is refused on every route except the two OTP
routes, and an access_token is refused on the OTP routes.

require_permission(name) builds on require_token(TokenType.ACCESS) and
answers 403 unless one of the user's roles grants `name`.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. Nothing else in auth/ does.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request

from auth.models import TokenType
from auth.store import UserStore
from auth.tokens import decode_token, token_type_of

# Bearer tokens never carry refresh_token; that one only travels in the
# /auth/refresh body.
_BEARER_TYPES = frozenset({TokenType.OTP_VERIFICATION, TokenType.ACCESS})


@dataclass
class TokenClaims:
    """What a route learns about the caller from a verified bearer token."""

    user_id: int
    token_type: TokenType
    raw: str


def bearer_token(request: Request) -> str | None:
    """Return the token from "Authorization: Bearer <token>", or None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(status_code=401, detail={"message": message})


def require_token(*allowed: TokenType):
    """Build a dependency that accepts only bearer tokens whose type is in `allowed`."""
    allowed_types = frozenset(allowed)

    def dependency(request: Request) -> TokenClaims:
        token = bearer_token(request)
        if token is None:
            raise _unauthorized("Unauthorized - no token provided")

        payload = decode_token(token)
        if payload is None:
            raise _unauthorized("Invalid or expired token")

        token_type = token_type_of(payload)
        if token_type not in _BEARER_TYPES:
            raise _unauthorized("Invalid token type")

        if token_type not in allowed_types:
            if token_type is TokenType.OTP_VERIFICATION:
                message = "OTP token only allowed for verify-otp and resend-otp endpoints"
            else:
                message = "Access token not allowed for this endpoint"
            raise HTTPException(status_code=403, detail={"message": message})

        return TokenClaims(user_id=payload["user_id"], token_type=token_type, raw=token)

    return dependency


get_access_claims = require_token(TokenType.ACCESS)
get_otp_claims = require_token(TokenType.OTP_VERIFICATION)


def require_permission(permission: str):
    """Build a dependency that requires an access token AND the named permission.

    Use as a FastAPI dependency:
        @router.get("/user/")
        async def route(claims: TokenClaims = Depends(require_permission("read_users"))): ...
    """

    def dependency(request: Request, claims: TokenClaims = Depends(get_access_claims)) -> TokenClaims:
        user_store: UserStore = request.app.state.user_store
        if permission not in user_store.get_user_permissions(claims.user_id):
            raise HTTPException(status_code=403, detail={"message": "Forbidden: no permission"})
        return claims

    return dependency
