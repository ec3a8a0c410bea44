"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data containers, minimal logic). Stores and the
service do the work; these only own the shape of the domain.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


def normalize_email(email: str) -> str:
    """Trim and lower-case an email address before any comparison or write."""
    return (email or "").strip().lower()


@dataclass
class User:
    """A registered account.

    The user record is owned by the user store; the auth core only reads it
    and updates password_hash, is_verified and updated_at. password_hash is
    never empty once the record exists.
    """

    id: str
    email: str
    user_name: str
    password_hash: str
    first_name: str = ""
    last_name: str = ""
    is_active: bool = True
    is_verified: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class Token:
    """One issued credential.

    Only REFRESH tokens are persisted. `secret` is the bearer string; the store
    keeps only its SHA-256 digest, so a Token read back from the store carries
    the secret the caller presented.

    blacklisted is monotonic -- once True it is never reset.
    """

    id: str
    user_id: str
    secret: str
    kind: TokenKind
    expires_at: datetime
    created_at: datetime
    blacklisted: bool = False

    def __post_init__(self) -> None:
        if self.expires_at <= self.created_at:
            raise ValueError("Token.expires_at must be later than created_at")

    def is_expired(self, now: datetime) -> bool:
        # Closed condition: a token is already expired at its expiry instant.
        return now >= self.expires_at



@dataclass
class VerificationToken:
    """A single-use email verification token. Persisted as a digest like refresh tokens."""

    id: str
    user_id: str
    secret: str
    expires_at: datetime
    created_at: datetime
    used: bool = False

    def __post_init__(self) -> None:
        if self.expires_at <= self.created_at:
            raise ValueError("VerificationToken.expires_at must be later than created_at")

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class Claims:
    """Decoded content of an access token. Derived, never stored."""

    user_id: str
    email: str
    user_name: str
    expires_at: datetime


@dataclass(frozen=True)
class UserProfile:
    """Sanitized projection of a User -- no password hash."""

    id: str
    email: str
    user_name: str
    first_name: str
    last_name: str
    is_active: bool
    is_verified: bool = False

    @classmethod
    def from_user(cls, user: User) -> UserProfile:
        return cls(
            id=user.id,
            email=user.email,
            user_name=user.user_name,
            first_name=user.first_name,
            last_name=user.last_name,
            is_active=user.is_active,
            is_verified=user.is_verified,
        )


@dataclass(frozen=True)
class AuthTokens:
    """Result of a successful login or refresh."""

    access_token: str
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime
    user: UserProfile
    token_type: str = "bearer"


@dataclass
class RegisterRequest:
    email: str
    user_name: str
    password: str
    confirm_password: str
    first_name: str = ""
    last_name: str = ""
