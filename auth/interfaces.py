"""Capability protocols consumed by AuthService.

Each capability is a narrow Protocol so an implementation (a deterministic
test double, a different KDF, a remote user directory) can be substituted
without touching the orchestrator.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from auth.models import Claims, Token, User, UserProfile, VerificationToken


class PasswordHasher(Protocol):
    def hash(self, plaintext: str) -> str: ...

    def verify(self, digest: str, plaintext: str) -> bool: ...

    @property
    def dummy_hash(self) -> str: ...


class TokenGenerator(Protocol):
    def generate(self, byte_length: int = 32) -> str: ...


class IdGenerator(Protocol):
    def generate(self) -> str: ...


class ClaimsCodec(Protocol):
    def issue(self, user_id: str, email: str, user_name: str) -> tuple[str, datetime]: ...

    def parse(self, token: str) -> Claims: ...


class UserRepository(Protocol):
    def get_by_email(self, email: str) -> User: ...

    def get_by_id(self, user_id: str) -> User: ...

    def create(self, user: User) -> None: ...

    def update(self, user: User) -> None: ...

    def exists_by_email(self, email: str) -> bool: ...

    def mark_verified(self, user_id: str, when: datetime) -> None: ...


class TokenRepository(Protocol):
    def create(self, token: Token) -> None: ...

    def get_by_secret(self, secret: str) -> Token: ...

    def blacklist(self, secret: str) -> bool: ...

    def rotate(self, old_secret: str, new_token: Token) -> None: ...

    def delete_all_for_user(self, user_id: str) -> int: ...

    def sweep_expired(self, now: datetime) -> int: ...

    def create_verification(self, token: VerificationToken) -> None: ...

    def get_verification(self, secret: str) -> VerificationToken: ...

    def mark_verification_used(self, secret: str) -> bool: ...


class RegistrationNotifier(Protocol):
    def user_registered(self, profile: UserProfile, verification_token: str | None) -> None: ...

    def verification_requested(self, profile: UserProfile, verification_token: str) -> None: ...
