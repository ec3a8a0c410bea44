"""
API request and response models for SessionKeeper REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field validation here is limited to shape (types, max lengths). Business rules
-- email format, password confirmation, password strength -- live in
AuthService so every caller gets the same field-level ValidationFailed errors.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuthTokens, Claims, UserProfile

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterBody(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: str = Field(default="", max_length=254)
    user_name: str = Field(default="", max_length=255)
    # max_length well above bcrypt's 72-byte limit; the policy reports the exact violation.
    password: str = Field(default="", max_length=255)
    confirm_password: str = Field(default="", max_length=255)
    first_name: str = Field(default="", max_length=255)
    last_name: str = Field(default="", max_length=255)


class LoginBody(BaseModel):
    email: str = Field(max_length=254)
    password: str = Field(max_length=255)


class RefreshBody(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=512)


class LogoutBody(BaseModel):
    """Either a refresh token or an access token; only refresh tokens are revocable."""

    token: str = Field(default="", max_length=4096)


class ChangePasswordBody(BaseModel):
    old_password: str = Field(max_length=255)
    new_password: str = Field(max_length=255)


class VerifyEmailBody(BaseModel):
    token: str = Field(min_length=1, max_length=512)


class ResendVerificationBody(BaseModel):
    email: str = Field(max_length=254)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserProfileResponse(BaseModel):
    """Sanitized user projection. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    user_name: str
    first_name: str
    last_name: str
    is_active: bool
    is_verified: bool

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserProfileResponse":
        return cls(
            id=profile.id,
            email=profile.email,
            user_name=profile.user_name,
            first_name=profile.first_name,
            last_name=profile.last_name,
            is_active=profile.is_active,
            is_verified=profile.is_verified,
        )


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Seconds until the access token expires.")
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime
    user: UserProfileResponse

    @classmethod
    def from_tokens(cls, tokens: AuthTokens, now: datetime) -> "TokenResponse":
        return cls(
            access_token=tokens.access_token,
            token_type=tokens.token_type,
            expires_in=max(int((tokens.access_expires_at - now).total_seconds()), 0),
            access_expires_at=tokens.access_expires_at,
            refresh_token=tokens.refresh_token,
            refresh_expires_at=tokens.refresh_expires_at,
            user=UserProfileResponse.from_profile(tokens.user),
        )


class ClaimsResponse(BaseModel):
    user_id: str
    email: str
    user_name: str
    expires_at: datetime

    @classmethod
    def from_claims(cls, claims: Claims) -> "ClaimsResponse":
        return cls(
            user_id=claims.user_id,
            email=claims.email,
            user_name=claims.user_name,
            expires_at=claims.expires_at,
        )


class MessageResponse(BaseModel):
    message: str


class VerifyEmailResponse(BaseModel):
    message: str
    user_id: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
