"""
api/routes/user.py -- User endpoints behind access-token + permission checks.

Routes (mounted under /api):
  GET /user/   -- current user's profile; requires the read_users permission
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import Envelope
from auth.dependencies import TokenClaims, require_permission
from auth.service import AuthService

router = APIRouter(prefix="/user")


@router.get("/")
async def get_user(request: Request, claims: TokenClaims = Depends(require_permission("read_users"))) -> JSONResponse:
    service: AuthService = request.app.state.auth_service
    outcome = await service.get_profile(claims.user_id)
    return JSONResponse(
        status_code=outcome.code,
        content=Envelope(code=outcome.code, message=outcome.message, data=outcome.data).to_content(),
    )
