"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store and the orchestrator do the work.

Layer rule: no imports from api/ or mailer/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Purpose(str, Enum):
    """What a verification record authorizes. One active record per (user, purpose)."""

    VERIFY_EMAIL = "VERIFY_EMAIL"
    LOGIN = "LOGIN"
    RESET_PASSWORD = "RESET_PASSWORD"


class TokenType(str, Enum):
    """The `type` claim of every JWT the issuer mints."""

    OTP_VERIFICATION = "otp_verification"
    ACCESS = "access_token"
    REFRESH = "refresh_token"


@dataclass
class User:
    """A registered account.

    email_verified_at stays None until the VERIFY_EMAIL flow completes; login
    refuses to issue an OTP before then. hashed_password is bcrypt.
    """

    email: str
    hashed_password: str
    id: int | None = None
    email_verified_at: str | None = None
    created_at: str | None = None

    @property
    def is_verified(self) -> bool:
        return self.email_verified_at is not None


@dataclass
class VerificationRecord:
    """A single-use, purpose-scoped, expiring credential artifact.

    code_hash is HMAC-SHA256 of the raw link token for VERIFY_EMAIL and
    RESET_PASSWORD (deterministic, so the store can look it up by hash), and a
    bcrypt hash of the 6-digit code for LOGIN (compared per user, never looked
    up). used_at is set on consumption and on supersession by a newer record.
    """

    user_id: int
    purpose: Purpose
    code_hash: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None
    used_at: str | None = None


@dataclass
class Role:
    name: str
    id: int | None = None
    permissions: list[str] = field(default_factory=list)


@dataclass
class Outcome:
    """Successful result of an orchestrator operation, rendered as the response envelope."""

    code: int
    message: str
    data: dict | None = None


class AuthError(Exception):
    """Business-rule failure raised by the orchestrator.

    Carries the HTTP status the API layer should answer with. The auth package
    does not import FastAPI; api/main.py registers a handler that turns this
    into the {code, message, data} envelope.
    """

    def __init__(self, status_code: int, message: str, data: dict | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.data = data
