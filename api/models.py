"""
API request and response models for CropKeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field names are snake_case in Python and camelCase on the wire
(accessToken, plantingsCount, currentPassword, ...) to match the existing
browser client. Both spellings are accepted on input.
"""

import re
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator
from pydantic.alias_generators import to_camel

from auth.models import Identity, Role

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 72
PASSWORD_MAX_BYTES = 72  # bcrypt refuses longer input

DisplayName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=50)]


def _normalize_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Must be a valid email address")
    return value


def _check_password_strength(value: str) -> str:
    """At most 72 UTF-8 bytes, with at least one lower-case letter, one upper-case letter, and one digit."""
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    if not (
        any(c.islower() for c in value) and any(c.isupper() for c in value) and any(c.isdigit() for c in value)
    ):
        raise ValueError("Password must contain at least one lowercase letter, one uppercase letter and one number")
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_WireModel):
    """Request body for POST /api/auth/register."""

    email: str = Field(max_length=255)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    name: DisplayName

    normalize_email = field_validator("email")(_normalize_email)
    check_password = field_validator("password")(_check_password_strength)


class LoginRequest(_WireModel):
    """Request body for POST /api/auth/login.

    No strength check on password -- login must fail with the generic
    credentials error, not a validation error that hints at the policy.
    """

    email: str = Field(max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)

    normalize_email = field_validator("email")(_normalize_email)


class UpdateProfileRequest(_WireModel):
    """Request body for PUT /api/auth/profile. Omitted fields are left unchanged."""

    name: Optional[DisplayName] = None
    email: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_email(value) if value is not None else None


class ChangePasswordRequest(_WireModel):
    """Request body for PUT /api/auth/password."""

    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    confirm_password: str

    check_new_password = field_validator("new_password")(_check_password_strength)

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordRequest":
        if self.confirm_password != self.new_password:
            raise ValueError("Passwords do not match")
        return self


class RoleUpdate(_WireModel):
    """Request body for PATCH /api/auth/users/{id}. Admin only."""

    role: Role


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdentityResponse(_WireModel):
    """Public view of an identity. The password hash is never included."""

    id: int
    email: str
    name: str
    role: Role
    created_at: str
    updated_at: str

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            id=identity.id,
            email=identity.email,
            name=identity.name,
            role=identity.role,
            created_at=identity.created_at or "",
            updated_at=identity.updated_at or "",
        )


class MeIdentity(IdentityResponse):
    plantings_count: int = 0


class MeResponse(_WireModel):
    """Response for GET /api/auth/me."""

    user: MeIdentity


class SessionResponse(_WireModel):
    """Response for POST /register and POST /login."""

    message: str
    user: IdentityResponse
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class RefreshResponse(_WireModel):
    message: str
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class ProfileResponse(_WireModel):
    message: str
    user: IdentityResponse
    # Present only when the email changed and credentials were re-issued.
    access_token: Optional[str] = None


class SessionStatusResponse(_WireModel):
    """Response for GET /api/auth/session -- never fails for anonymous callers."""

    authenticated: bool
    user_id: Optional[int] = None
    role: Optional[Role] = None


class CsrfResponse(_WireModel):
    csrf_token: str


class MessageResponse(_WireModel):
    message: str


class ErrorResponse(BaseModel):
    """Failure envelope returned on every 4xx/5xx response."""

    model_config = ConfigDict(frozen=True)

    error: str
    code: Optional[str] = None
    details: Optional[list[Any]] = None


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    timestamp: str
    environment: str
