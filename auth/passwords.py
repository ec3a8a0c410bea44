"""
auth/passwords.py -- Password hashing (bcrypt) and password strength policy.

Security design decisions:
  Hashing: bcrypt directly, no passlib wrapper. bcrypt is the right choice for
       low-entropy secrets because its cost factor makes offline brute force
       expensive. The default of 12 rounds costs a few hundred milliseconds on
       commodity hardware; tests drop to 4 rounds.

  72-byte limit: bcrypt ignores input past 72 bytes (bcrypt 5.x raises).
       hash() rejects such passwords with ValueError instead of truncating,
       and the policy below reports them as `max_length`.

  Timing equalization: every hasher computes one dummy hash at construction.
       AuthService.login() verifies against it when the email is unknown, so
       response time does not reveal whether an account exists.

Layer rule: stdlib + bcrypt only.
"""

from __future__ import annotations

import re

import bcrypt

from auth.errors import WeakPassword

_BCRYPT_MAX_BYTES = 72

MIN_PASSWORD_LENGTH = 8
MIN_CHARACTER_CLASSES = 3

_UPPERCASE_RE = re.compile(r"[A-Z]")
_LOWERCASE_RE = re.compile(r"[a-z]")
_NUMBER_RE = re.compile(r"[0-9]")
_SYMBOL_RE = re.compile(r"[^A-Za-z0-9]")


class BcryptHasher:
    """Credential Hasher backed by bcrypt.

    Usage:
        hasher = BcryptHasher(rounds=12)
        digest = hasher.hash("Str0ng!Pass")
        hasher.verify(digest, "Str0ng!Pass")   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("sessionkeeper_timing_dummy")

    @property
    def dummy_hash(self) -> str:
        return self._dummy_hash

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt digest of plaintext.

        Raises ValueError if plaintext exceeds bcrypt's 72-byte input limit.
        """
        encoded = plaintext.encode("utf-8")
        if len(encoded) > _BCRYPT_MAX_BYTES:
            raise ValueError("password exceeds 72 bytes")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, digest: str, plaintext: str) -> bool:
        """Return True if plaintext matches digest. Never raises."""
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
        except Exception:
            # Malformed digest, empty digest, over-long input, non-str argument.
            return False


# ---------------------------------------------------------------------------
# Strength policy
# ---------------------------------------------------------------------------


def character_classes(password: str) -> int:
    """Count how many of {upper, lower, digit, symbol} appear in password."""
    return sum(
        1 for pattern in (_UPPERCASE_RE, _LOWERCASE_RE, _NUMBER_RE, _SYMBOL_RE) if pattern.search(password)
    )


def evaluate_password(password: str) -> list[str]:
    """Return a list of violation codes; an empty list means the password is acceptable.

    Codes:
      min_length  -- fewer than 8 characters
      max_length  -- more than 72 UTF-8 bytes (bcrypt input limit)
      complexity  -- fewer than 3 of upper / lower / digit / symbol
    """
    pw = password or ""
    violations: list[str] = []
    if len(pw) < MIN_PASSWORD_LENGTH:
        violations.append("min_length")
    if len(pw.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        violations.append("max_length")
    if character_classes(pw) < MIN_CHARACTER_CLASSES:
        violations.append("complexity")
    return violations


def ensure_strong_password(password: str, field: str = "password") -> None:
    violations = evaluate_password(password)
    if violations:
        raise WeakPassword(violations, field=field)
