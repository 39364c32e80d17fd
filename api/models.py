"""
API request and response models for MonoAuth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the domain shape.

Wire names: several request fields are hyphenated ("verification-token",
"refresh-token", "new-password"). Those are declared with aliases;
populate_by_name lets Python callers use the snake_case names too.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# bcrypt only looks at the first 72 bytes.
_PASSWORD_MIN = 8
_PASSWORD_MAX = 72


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)


class EmailRequest(BaseModel):
    """Body for resend-email-verification and forgot-password.

    EmailStr normalizes the domain the same way register does, so the spelling
    used at registration finds the stored address.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr


class VerifyEmailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    verification_token: str = Field(alias="verification-token", min_length=1, max_length=255)


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    verification_token: str = Field(alias="verification-token", min_length=1, max_length=255)
    new_password: str = Field(alias="new-password", min_length=_PASSWORD_MIN, max_length=_PASSWORD_MAX)


class VerifyOtpRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    otp: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class RefreshTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(alias="refresh-token", min_length=1)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class Envelope(BaseModel):
    """Uniform response body for every endpoint, success or failure.

    errors is present only on validation failures: {field: [messages]}.
    """

    model_config = ConfigDict(frozen=True)

    code: int
    message: str
    data: Any = None
    errors: Optional[dict[str, list[str]]] = None

    def to_content(self) -> dict:
        """Serialize for JSONResponse. `data` is always present, `errors` only when set."""
        content = self.model_dump(exclude={"errors"})
        if self.errors is not None:
            content["errors"] = self.errors
        return content


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
