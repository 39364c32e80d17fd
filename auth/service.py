"""
auth/service.py -- The authentication orchestrator.

AuthService sequences the credential store, the verification ledger, the
token issuer and the mailer across the account flows:

    register -> verify_email -> login -> verify_otp -> (access, refresh)
                                   \\-> resend_otp
    forgot_password -> reset_password
    refresh_token

Every verification record follows the same lifecycle:

    issued -> consumed | expired | superseded-by-reissue

All three end states are terminal. Supersession and issuance happen in one
store transaction (UserStore.issue_verification), consumption is a
conditional update, so a code is usable at most once even when two requests
race for it.

Return/raise contract:
    Success returns an Outcome(code, message, data).
    A business-rule failure raises AuthError(status_code, message, data).
    The API layer renders both as {code, message, data}.

Threading:
    bcrypt and the synchronous SQLAlchemy store block. Each public coroutine
    hands that work to a worker thread with asyncio.to_thread (one call per
    operation, the `_`-prefixed sync methods below) and awaits only the mailer
    on the event loop.

Emails are sent after the records are committed. A delivery failure surfaces
as a 500; the records stay valid and the user can ask for a resend.

Layer rule: no imports from api/. The mailer is injected.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError

from auth.models import AuthError, Outcome, Purpose, TokenType, User, VerificationRecord
from auth.store import CooldownActive, UserStore
from auth.tokens import (
    authenticate_user,
    create_token,
    create_token_pair,
    decode_token,
    generate_link_token,
    generate_otp,
    hash_link_token,
    hash_password,
    verify_password,
)
from core.clock import from_iso, to_iso, utcnow
from core.config import Settings
from mailer.sender import AuthMailer

logger = logging.getLogger("monoauth.auth")

_COOLDOWN_NOUNS: dict[Purpose, str] = {
    Purpose.VERIFY_EMAIL: "verification email",
    Purpose.LOGIN: "OTP",
    Purpose.RESET_PASSWORD: "password reset",
}


class AuthService:
    """Stateless orchestrator; one instance is shared by all requests.

    Args:
        store:    Credential store and verification ledger.
        mailer:   Sends the OTP / verify / reset emails.
        settings: Lifetimes, cooldown, app_url, default role.
        clock:    Returns the current UTC time. Tests inject a movable clock
                  to step past expiries and cooldown windows.
    """

    def __init__(
        self,
        store: UserStore,
        mailer: AuthMailer,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.settings = settings
        self.clock = clock

    # ------------------------------------------------------------------
    # Registration and email verification
    # ------------------------------------------------------------------

    async def register(self, email: str, password: str) -> Outcome:
        user_id, token = await asyncio.to_thread(self._create_account, email, password)
        await self.mailer.send_verify_email(email, self._link("verify-email", token))
        return Outcome(201, "Registration successful. Please verify your email.", {"id": user_id, "email": email})

    async def verify_email(self, token: str) -> Outcome:
        return await asyncio.to_thread(self._verify_email, token)

    async def resend_email_verification(self, email: str) -> Outcome:
        to, token = await asyncio.to_thread(self._reissue_email_verification, email)
        await self.mailer.send_verify_email(to, self._link("verify-email", token))
        return Outcome(200, "Verification email has been resent")

    # ------------------------------------------------------------------
    # Login and OTP
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> Outcome:
        """Check credentials and start the OTP step.

        The response carries an otp_verification token, never the code. An
        unverified account is rejected before any LOGIN record is written.
        """
        to, otp, otp_token = await asyncio.to_thread(self._start_login, email, password)
        await self.mailer.send_otp_email(to, otp)
        return Outcome(200, "OTP sent to your email", {"token": {"verify_otp_token": otp_token}})

    async def verify_otp(self, otp: str, user_id: int, otp_token: str) -> Outcome:
        return await asyncio.to_thread(self._complete_login, otp, user_id, otp_token)

    async def resend_otp(self, user_id: int, otp_token: str) -> Outcome:
        to, otp, new_token = await asyncio.to_thread(self._reissue_otp, user_id, otp_token)
        await self.mailer.send_otp_email(to, otp)
        return Outcome(200, "OTP has been resent to your email", {"token": {"verify_otp_token": new_token}})

    # ------------------------------------------------------------------
    # Token refresh
    # ------------------------------------------------------------------

    async def refresh_token(self, refresh_token: str) -> Outcome:
        """Rotate an access/refresh pair.

        Rotation is stateless: the presented refresh token stays valid until
        its own expiry. There is no revocation list.
        """
        return await asyncio.to_thread(self._rotate_tokens, refresh_token)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str) -> Outcome:
        """Email a reset link. Unknown addresses get the same 200 as known ones."""
        pending = await asyncio.to_thread(self._start_password_reset, email)
        if pending is None:
            return Outcome(200, "If the email exists, reset instructions have been sent")

        to, token = pending
        await self.mailer.send_forgot_password_email(to, self._link("reset-password", token))
        return Outcome(200, "Reset instructions have been sent")

    async def reset_password(self, token: str, new_password: str) -> Outcome:
        return await asyncio.to_thread(self._reset_password, token, new_password)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def get_profile(self, user_id: int) -> Outcome:
        return await asyncio.to_thread(self._profile, user_id)

    # ------------------------------------------------------------------
    # Blocking steps (run in a worker thread)
    # ------------------------------------------------------------------

    def _create_account(self, email: str, password: str) -> tuple[int, str]:
        if self.store.get_by_email(email) is not None:
            raise AuthError(409, "Email already in use")

        now = self.clock()
        try:
            user_id = self.store.create_user(User(email=email, hashed_password=hash_password(password)), now)
        except IntegrityError as exc:
            raise AuthError(409, "Email already in use") from exc

        if self.settings.default_role and not self.store.assign_role(user_id, self.settings.default_role):
            logger.warning("Default role %r missing -- run `python main.py seed`", self.settings.default_role)

        token = self._issue_link_token(user_id, Purpose.VERIFY_EMAIL, now)
        logger.info("Registered user_id=%d", user_id)
        return user_id, token

    def _verify_email(self, token: str) -> Outcome:
        now = self.clock()
        record = self.store.find_active_by_hash(hash_link_token(token), Purpose.VERIFY_EMAIL, now)
        if record is None or not self.store.consume_email_verification(record.id, record.user_id, now):
            raise AuthError(400, "Invalid or expired verification token")

        logger.info("Email verified for user_id=%d", record.user_id)
        return Outcome(200, "Email verified successfully")

    def _reissue_email_verification(self, email: str) -> tuple[str, str]:
        user = self.store.get_by_email(email)
        if user is None:
            raise AuthError(404, "User not found")
        if user.is_verified:
            raise AuthError(400, "Email already verified")

        return user.email, self._issue_link_token(user.id, Purpose.VERIFY_EMAIL, self.clock(), rate_limited=True)

    def _start_login(self, email: str, password: str) -> tuple[str, str, str]:
        user = authenticate_user(self.store, email, password)
        if user is None:
            raise AuthError(401, "Invalid credentials")
        if not user.is_verified:
            raise AuthError(400, "Please verify your email before logging in")

        otp = self._issue_otp(user.id, self.clock())
        return user.email, otp, create_token(TokenType.OTP_VERIFICATION, user.id)

    def _complete_login(self, otp: str, user_id: int, otp_token: str) -> Outcome:
        self._check_otp_token(otp_token, user_id, "Unauthorized OTP verification")

        record = self.store.latest_unused(user_id, Purpose.LOGIN)
        if record is None:
            raise AuthError(400, "OTP not found")

        now = self.clock()
        if from_iso(record.expires_at) <= now:
            raise AuthError(410, "OTP expired")
        if not verify_password(otp, record.code_hash):
            logger.info("OTP mismatch for user_id=%d", user_id)
            raise AuthError(403, "Invalid OTP")
        if not self.store.mark_used(record.id, now):
            raise AuthError(400, "OTP not found")

        user = self.store.get_by_id(user_id)
        if user is None:
            raise AuthError(404, "User not found")

        logger.info("Login completed for user_id=%d", user_id)
        return Outcome(
            200,
            "Login successful",
            {"id": user.id, "email": user.email, "token": create_token_pair(user.id)},
        )

    def _reissue_otp(self, user_id: int, otp_token: str) -> tuple[str, str, str]:
        self._check_otp_token(otp_token, user_id, "Unauthorized OTP resend")

        user = self.store.get_by_id(user_id)
        if user is None:
            raise AuthError(404, "User not found")

        otp = self._issue_otp(user.id, self.clock(), rate_limited=True)
        return user.email, otp, create_token(TokenType.OTP_VERIFICATION, user.id)

    def _rotate_tokens(self, refresh_token: str) -> Outcome:
        payload = decode_token(refresh_token)
        if payload is None:
            raise AuthError(401, "Invalid or expired refresh token")
        if payload["type"] != TokenType.REFRESH.value:
            raise AuthError(403, "Invalid token type")

        user = self.store.get_by_id(payload["user_id"])
        if user is None:
            raise AuthError(404, "User not found")

        return Outcome(200, "Token refreshed", {"token": create_token_pair(user.id)})

    def _start_password_reset(self, email: str) -> tuple[str, str] | None:
        user = self.store.get_by_email(email)
        if user is None:
            return None
        return user.email, self._issue_link_token(user.id, Purpose.RESET_PASSWORD, self.clock(), rate_limited=True)

    def _reset_password(self, token: str, new_password: str) -> Outcome:
        now = self.clock()
        record = self.store.find_active_by_hash(hash_link_token(token), Purpose.RESET_PASSWORD, now)
        if record is None or not self.store.consume_password_reset(
            record.id, record.user_id, hash_password(new_password), now
        ):
            raise AuthError(401, "Invalid or expired token")

        logger.info("Password reset for user_id=%d", record.user_id)
        return Outcome(200, "Password reset successful")

    def _profile(self, user_id: int) -> Outcome:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise AuthError(404, "User not found")
        return Outcome(
            200,
            "User fetched successfully",
            {"id": user.id, "email": user.email, "created_at": user.created_at},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue(self, user_id: int, purpose: Purpose, code_hash: str, now: datetime, rate_limited: bool) -> None:
        """Write a new record for (user, purpose), superseding older unused ones.

        With rate_limited, the per-purpose cooldown is checked in the same
        transaction and a 429 carrying waitTime is raised while it is open.
        """
        expires_at = now + timedelta(minutes=self.settings.verification_expire_minutes)
        record = VerificationRecord(user_id=user_id, purpose=purpose, code_hash=code_hash, expires_at=to_iso(expires_at))
        cooldown = self.settings.email_rate_limit_minutes * 60 if rate_limited else 0
        try:
            self.store.issue_verification(record, now, cooldown_seconds=cooldown)
        except CooldownActive as exc:
            logger.info("Cooldown rejected %s for user_id=%d (%ds left)", purpose.value, user_id, exc.wait_seconds)
            raise AuthError(
                429,
                f"Please wait {exc.wait_seconds} seconds before requesting another {_COOLDOWN_NOUNS[purpose]}",
                {"waitTime": exc.wait_seconds},
            ) from exc

    def _issue_link_token(self, user_id: int, purpose: Purpose, now: datetime, rate_limited: bool = False) -> str:
        token = generate_link_token()
        self._issue(user_id, purpose, hash_link_token(token), now, rate_limited)
        return token

    def _issue_otp(self, user_id: int, now: datetime, rate_limited: bool = False) -> str:
        otp = generate_otp()
        self._issue(user_id, Purpose.LOGIN, hash_password(otp), now, rate_limited)
        logger.info("OTP issued for user_id=%d", user_id)
        return otp

    def _check_otp_token(self, otp_token: str, user_id: int, forbidden_message: str) -> None:
        payload = decode_token(otp_token)
        if payload is None:
            raise AuthError(401, "Invalid or expired OTP token")
        if payload["type"] != TokenType.OTP_VERIFICATION.value or payload["user_id"] != user_id:
            raise AuthError(403, forbidden_message)

    def _link(self, path: str, token: str) -> str:
        return f"{self.settings.app_url.rstrip('/')}/{path}?token={token}"
