"""
API request and response models for SessionGuard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Malformed input is rejected here (422) before any auth component runs, so the
core only ever sees well-formed emails, passwords within policy, and grant
requests carrying the fields their grant needs.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from auth.models import SafeUser

# ---------------------------------------------------------------------------
# Password policy
# ---------------------------------------------------------------------------

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


def _check_password_policy(value: str) -> str:
    """Require at least one lowercase letter, one uppercase letter, and one digit."""
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"\d", value):
        raise ValueError("Password must contain at least one number")
    return value


# ---------------------------------------------------------------------------
# OAuth -- requests
# ---------------------------------------------------------------------------


class GrantType(str, Enum):
    password = "password"
    refresh_token = "refresh_token"


class TokenRequest(BaseModel):
    """Request body for POST /api/v1/oauth/token.

    password grant      -> username (email) + password
    refresh_token grant -> refresh_token
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    grant_type: GrantType
    username: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=1, max_length=PASSWORD_MAX_LENGTH)
    refresh_token: Optional[str] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def check_grant_fields(self) -> "TokenRequest":
        if self.grant_type is GrantType.password and not (self.username and self.password):
            raise ValueError("password grant requires username and password")
        if self.grant_type is GrantType.refresh_token and not self.refresh_token:
            raise ValueError("refresh_token grant requires refresh_token")
        return self


class RevokeRequest(BaseModel):
    """Request body for POST /api/v1/oauth/revoke."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# OAuth -- responses
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """OAuth 2.0 token response. expires_in is the access-token lifetime in seconds."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: Literal["Bearer"] = "Bearer"
    expires_in: int
    refresh_token: str
    id_token: str


class UserInfoResponse(BaseModel):
    """OIDC standard claims for GET /api/v1/oauth/userinfo."""

    model_config = ConfigDict(frozen=True)

    sub: str
    email: str
    given_name: str
    family_name: str


class ProviderInfo(BaseModel):
    """One configured federated identity provider."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: str = Field(min_length=1)
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("new_password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return _check_password_policy(value)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/users/register."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)

    @field_validator("password")
    @classmethod
    def password_policy(cls, value: str) -> str:
        return _check_password_policy(value)


class UserResponse(BaseModel):
    """A SafeUser as returned over HTTP. Never carries credentials."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    first_name: str
    last_name: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: SafeUser) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


# ---------------------------------------------------------------------------
# Envelope / health
# ---------------------------------------------------------------------------


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
    components: dict[str, str] = Field(default_factory=dict)
