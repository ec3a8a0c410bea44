"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

Covers:
  - hash/verify round trip and rejection of a near-miss password
  - salts differ between calls for the same password
  - verify() never raises on malformed or empty digests
  - the 72-byte bcrypt limit is rejected, not truncated
  - policy: length >= 8 and at least 3 of upper/lower/digit/symbol
"""

from __future__ import annotations

import pytest

from auth.errors import ValidationFailed, WeakPassword
from auth.passwords import BcryptHasher, character_classes, ensure_strong_password, evaluate_password


@pytest.fixture(scope="module")
def hasher() -> BcryptHasher:
    return BcryptHasher(rounds=4)


class TestBcryptHasher:
    @pytest.mark.parametrize("password", ["Str0ng!Pass", "Aa1!aaaa", "pässwörd-ünïcode-1A", " leading space 1A"])
    def test_hash_then_verify(self, hasher: BcryptHasher, password: str) -> None:
        digest = hasher.hash(password)
        assert hasher.verify(digest, password) is True
        assert hasher.verify(digest, password + "x") is False

    def test_digest_is_salted(self, hasher: BcryptHasher) -> None:
        first = hasher.hash("Str0ng!Pass")
        second = hasher.hash("Str0ng!Pass")
        assert first != second
        assert hasher.verify(first, "Str0ng!Pass")
        assert hasher.verify(second, "Str0ng!Pass")

    def test_digest_does_not_contain_plaintext(self, hasher: BcryptHasher) -> None:
        assert "Str0ng!Pass" not in hasher.hash("Str0ng!Pass")

    @pytest.mark.parametrize("digest", ["", "not-a-bcrypt-hash", "$2b$04$short", "$2b$04$" + "x" * 53])
    def test_verify_malformed_digest_returns_false(self, hasher: BcryptHasher, digest: str) -> None:
        assert hasher.verify(digest, "Str0ng!Pass") is False

    def test_verify_non_string_returns_false(self, hasher: BcryptHasher) -> None:
        assert hasher.verify(None, "Str0ng!Pass") is False  # type: ignore[arg-type]

    def test_over_long_password_is_rejected(self, hasher: BcryptHasher) -> None:
        with pytest.raises(ValueError):
            hasher.hash("Aa1!" + "a" * 69)

    def test_dummy_hash_is_a_real_digest(self, hasher: BcryptHasher) -> None:
        assert hasher.dummy_hash.startswith("$2")
        assert hasher.verify(hasher.dummy_hash, "Str0ng!Pass") is False


class TestPasswordPolicy:
    def test_short_password_is_weak(self) -> None:
        violations = evaluate_password("short")
        assert "min_length" in violations

    def test_eight_chars_four_classes_passes(self) -> None:
        assert evaluate_password("Aa1!aaaa") == []

    def test_three_classes_is_enough(self) -> None:
        assert evaluate_password("Aaaaaaa1") == []
        assert evaluate_password("aaaaaa1!") == []

    def test_two_classes_fails_complexity(self) -> None:
        assert evaluate_password("aaaaaaa1") == ["complexity"]
        assert evaluate_password("ABCDEFGH!") == ["complexity"]

    def test_over_72_bytes_is_reported(self) -> None:
        assert "max_length" in evaluate_password("Aa1!" + "a" * 69)

    def test_multibyte_characters_count_bytes_for_limit(self) -> None:
        # 40 two-byte characters are 80 bytes.
        assert "max_length" in evaluate_password("Aa1!" + "é" * 40)

    def test_character_classes(self) -> None:
        assert character_classes("") == 0
        assert character_classes("a") == 1
        assert character_classes("aA") == 2
        assert character_classes("aA1") == 3
        assert character_classes("aA1 ") == 4

    def test_ensure_strong_password_raises_weak_password(self) -> None:
        with pytest.raises(WeakPassword) as exc_info:
            ensure_strong_password("short")
        err = exc_info.value
        assert isinstance(err, ValidationFailed)
        assert "password" in err.fields
        assert "min_length" in err.violations

    def test_ensure_strong_password_uses_given_field(self) -> None:
        with pytest.raises(WeakPassword) as exc_info:
            ensure_strong_password("short", field="new_password")
        assert "new_password" in exc_info.value.fields

    def test_ensure_strong_password_accepts_strong(self) -> None:
        ensure_strong_password("Str0ng!Pass")
