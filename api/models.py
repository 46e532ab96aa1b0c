"""
API request and response models for the auth service REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Password fields are bounded by bcrypt's 72-byte input limit, checked on the
UTF-8 encoding rather than the character count.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Identity

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain. Deliverability
# is the notification channel's problem, not the validator's.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255, examples=["example@mail.com"])
    password: str = Field(min_length=MIN_PASSWORD_LENGTH, examples=["12345678"])

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    No minimum length on password: a short guess is just a wrong password and
    must get the same invalid_credentials answer as any other.
    """

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255, examples=["example@mail.com"])
    password: str = Field(min_length=1, examples=["12345678"])

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255, examples=["example@mail.com"])
    previous_password: str = Field(min_length=1, examples=["12345678"])
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH, examples=["123456789"])

    @field_validator("previous_password", "new_password")
    @classmethod
    def passwords_fit_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255, examples=["example@mail.com"])


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    """Public view of an identity returned by login, register and session."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(id=identity.id, username=identity.username, email=identity.email)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
