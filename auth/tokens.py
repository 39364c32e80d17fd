"""
auth/tokens.py -- JWT, password hashing, and verification-code utilities.

Security design decisions:
  JWT: python-jose with HS256. Every token carries a `type` claim
       (otp_verification | access_token | refresh_token), the numeric user_id,
       `sub` (the user_id as a string) and `exp`. Verification returns None on
       any failure -- callers turn that into a 401. The type claim is what
       keeps a short-lived OTP token from opening protected endpoints.

  Passwords and OTP codes: bcrypt. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered [C1].

  Link tokens (email verification, password reset): 48 URL-safe characters
       from secrets.token_urlsafe. We store HMAC-SHA256(SECRET_KEY, token) so
       lookup is O(1) by hash; bcrypt's intentional slowness is unnecessary
       for high-entropy values.

  OTP codes: 6 decimal digits from secrets.randbelow. Low entropy, hence
       bcrypt plus a short expiry.

Layer rule: no imports from api/ or mailer/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import TokenType
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("monoauth.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

_OTP_DIGITS = 6
_LINK_TOKEN_LENGTH = 48

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    passwords at 72 characters so inputs stay within the limit.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Computed once at module load.
_DUMMY_HASH: str = hash_password("monoauth_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password pair with timing equalization [C1].

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any failure. Email verification is
    not checked here; the orchestrator reports it separately.
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------

_DEFAULT_LIFETIMES: dict[TokenType, int] = {
    TokenType.OTP_VERIFICATION: _settings.verification_expire_minutes * 60,
    TokenType.ACCESS: _settings.access_token_expire_seconds,
    TokenType.REFRESH: _settings.refresh_token_expire_seconds,
}


def create_token(token_type: TokenType, user_id: int, expire_seconds: int = 0) -> str:
    """Encode a signed JWT of the given type for user_id.

    Args:
        token_type:     Which of the three token kinds to mint.
        user_id:        Numeric user ID stored in the DB.
        expire_seconds: Lifetime in seconds. If 0 (default), uses the
                        configured lifetime for token_type.
    """
    duration = expire_seconds if expire_seconds > 0 else _DEFAULT_LIFETIMES[token_type]
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "type": token_type.value,
        "sub": str(user_id),
        "user_id": user_id,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def create_token_pair(user_id: int) -> dict[str, str]:
    """Mint a fresh access + refresh pair, shaped for the response body."""
    return {
        "access_token": create_token(TokenType.ACCESS, user_id),
        "refresh_token": create_token(TokenType.REFRESH, user_id),
    }


def decode_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    Signature, expiry and the presence of the type/user_id claims are
    checked here. Whether the type is acceptable is the caller's decision.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "type" not in payload or not isinstance(payload.get("user_id"), int):
        return None
    return payload


def token_type_of(payload: dict) -> TokenType | None:
    """Map the payload's type claim onto TokenType, or None if unrecognised."""
    try:
        return TokenType(payload.get("type"))
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Verification codes
# ---------------------------------------------------------------------------


def generate_link_token() -> str:
    """Return a 48-character URL-safe random string for email links."""
    return secrets.token_urlsafe(_LINK_TOKEN_LENGTH)[:_LINK_TOKEN_LENGTH]


def hash_link_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string.

    Deterministic, so the store can find the record by hash. Keyed, so a
    leaked database alone does not let an attacker forge a matching token.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


def generate_otp() -> str:
    """Return a zero-padded 6-digit one-time passcode.

    DEV_OTP_CODE replaces the random value only when DEBUG is on, so local
    testing can log in without reading the mail log.
    """
    if _settings.debug and _settings.dev_otp_code:
        return _settings.dev_otp_code
    return f"{secrets.randbelow(10**_OTP_DIGITS):0{_OTP_DIGITS}d}"
