"""
API request and response models for the /api/auth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

JSON field names are camelCase (rollNo, resetToken, accessToken) because the
frontend already speaks that dialect; Python attributes stay snake_case via
the alias generator. Either spelling is accepted on input.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# bcrypt only hashes the first 72 bytes of a password.
_BCRYPT_MAX_BYTES = 72

OTP_PATTERN = r"^\d{6}$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    student = "student"
    faculty = "faculty"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(_CamelModel):
    """Request body for POST /api/auth/login.

    Students log in with their roll number, faculty with their email. Which
    of the two is required depends on role and is checked in the route so the
    error message can name the missing field.
    """

    roll_no: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    role: RoleEnum


class OtpRequest(_CamelModel):
    """Request body for POST /api/auth/password/request-otp."""

    roll_no: Optional[str] = Field(default=None, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255)


class OtpVerifyRequest(_CamelModel):
    """Request body for POST /api/auth/password/verify-otp."""

    email: str = Field(min_length=3, max_length=255)
    otp: str = Field(pattern=OTP_PATTERN)


class PasswordResetRequest(_CamelModel):
    """Request body for POST /api/auth/password/reset."""

    reset_token: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=_BCRYPT_MAX_BYTES)

    @field_validator("new_password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        """Reject passwords whose UTF-8 form bcrypt would truncate."""
        if len(value.encode("utf-8")) > _BCRYPT_MAX_BYTES:
            raise ValueError(f"password must be at most {_BCRYPT_MAX_BYTES} bytes")
        return value


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserSummary(_CamelResponse):
    id: int
    email: str
    role: str


class LoginResponse(_CamelResponse):
    """Response for POST /api/auth/login."""

    message: str = "Login successful"
    user: UserSummary
    access_token: str
    refresh_token: str


class MessageResponse(_CamelResponse):
    message: str


class OtpRequestResponse(_CamelResponse):
    """Response for POST /api/auth/password/request-otp. email is masked."""

    message: str = "OTP sent successfully to your college email"
    email: str


class OtpVerifyResponse(_CamelResponse):
    message: str = "OTP verified successfully"
    reset_token: str


class VerifyTokenResponse(_CamelResponse):
    """Response for GET /api/auth/verify-token -- the decoded access-token claims."""

    valid: bool = True
    user: dict


class MeResponse(_CamelResponse):
    """Response for GET /api/auth/me. Profile fields depend on role."""

    id: int
    email: str
    role: str
    oauth_provider: Optional[str] = None
    name: Optional[str] = None
    roll_no: Optional[str] = None
    status: Optional[str] = None


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
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
