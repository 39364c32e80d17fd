"""
api/routes/auth.py -- Account and session REST endpoints.

Routes (mounted under /api):
  POST /auth/register                   -- create account, email verification link
  POST /auth/verify-email               -- consume a VERIFY_EMAIL token
  POST /auth/resend-email-verification  -- reissue the link (cooldown)
  POST /auth/login                      -- password check; emails an OTP, returns verify_otp_token
  POST /auth/refresh                    -- rotate access/refresh pair (refresh token in body)
  POST /auth/resend-otp                 -- reissue the OTP (otp_verification bearer, cooldown)
  POST /auth/verify-otp                 -- consume the OTP; returns access/refresh pair
  POST /auth/forgot-password            -- email a reset link (always 200 for unknown emails)
  POST /auth/reset-password             -- consume a RESET_PASSWORD token, set new password

Security:
  [H2] POST /login is rate-limited per client (LOGIN_RATE_LIMIT).
  [C1] AuthService.login() goes through authenticate_user() for timing equalization.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    EmailRequest,
    Envelope,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
    VerifyOtpRequest,
)
from auth.dependencies import TokenClaims, get_otp_claims
from auth.models import Outcome
from auth.service import AuthService
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - register, verify-email, resend-email-verification, login, refresh,
#   forgot-password, reset-password: public
# - resend-otp, verify-otp: otp_verification bearer only (access tokens get 403)
router = APIRouter(prefix="/auth")


def _respond(outcome: Outcome, no_store: bool = False) -> JSONResponse:
    resp = JSONResponse(
        status_code=outcome.code,
        content=Envelope(code=outcome.code, message=outcome.message, data=outcome.data).to_content(),
    )
    if no_store:
        resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


# ---------------------------------------------------------------------------
# Registration and email verification
# ---------------------------------------------------------------------------


@router.post("/register", status_code=201)
async def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and email a verification link. 409 if the email is taken."""
    return _respond(await _service(request).register(body.email, body.password))


@router.post("/verify-email")
async def verify_email(request: Request, body: VerifyEmailRequest) -> JSONResponse:
    """Mark the email verified. The token works once; a second use is a 400."""
    return _respond(await _service(request).verify_email(body.verification_token))


@router.post("/resend-email-verification")
async def resend_email_verification(request: Request, body: EmailRequest) -> JSONResponse:
    return _respond(await _service(request).resend_email_verification(body.email))


# ---------------------------------------------------------------------------
# Login, OTP and refresh
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router so FastAPI registers the undecorated function
@router.post("/login")
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """First factor. Emails the OTP and returns a short-lived verify_otp_token.

    Wrong email and wrong password share one 401 message so the response does
    not reveal which accounts exist.
    """
    return _respond(await _service(request).login(body.email, body.password), no_store=True)


@router.post("/refresh")
async def refresh(request: Request, body: RefreshTokenRequest) -> JSONResponse:
    return _respond(await _service(request).refresh_token(body.refresh_token), no_store=True)


@router.post("/resend-otp")
async def resend_otp(request: Request, claims: TokenClaims = Depends(get_otp_claims)) -> JSONResponse:
    return _respond(await _service(request).resend_otp(claims.user_id, claims.raw), no_store=True)


@router.post("/verify-otp")
async def verify_otp(
    request: Request,
    body: VerifyOtpRequest,
    claims: TokenClaims = Depends(get_otp_claims),
) -> JSONResponse:
    """Second factor. Exchanges the emailed code for an access/refresh pair."""
    return _respond(await _service(request).verify_otp(body.otp, claims.user_id, claims.raw), no_store=True)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/forgot-password")
async def forgot_password(request: Request, body: EmailRequest) -> JSONResponse:
    return _respond(await _service(request).forgot_password(body.email))


@router.post("/reset-password")
async def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    return _respond(await _service(request).reset_password(body.verification_token, body.new_password))
