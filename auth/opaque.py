"""
auth/opaque.py -- Random opaque strings for refresh-token secrets and entity IDs.

secrets.token_urlsafe(32) draws 32 bytes from the OS CSPRNG and returns 43
URL-safe base64 characters (256 bits of entropy). There is no fallback: if
the OS entropy source fails, the exception propagates and the call fails.
"""

from __future__ import annotations

import secrets

DEFAULT_BYTE_LENGTH = 32


class OpaqueTokenGenerator:
    def generate(self, byte_length: int = DEFAULT_BYTE_LENGTH) -> str:
        """Return a URL-safe random string built from byte_length random bytes."""
        if byte_length < 1:
            raise ValueError("byte_length must be at least 1")
        return secrets.token_urlsafe(byte_length)


class RandomIdGenerator:
    """Opaque, unguessable identifiers for users and stored tokens."""

    def __init__(self, byte_length: int = DEFAULT_BYTE_LENGTH) -> None:
        self._tokens = OpaqueTokenGenerator()
        self.byte_length = byte_length

    def generate(self) -> str:
        return self._tokens.generate(self.byte_length)
