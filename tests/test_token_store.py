"""
tests/test_token_store.py -- Unit tests for TokenStore (auth/store.py).

Covers:
  - create/get_by_secret round trip; only the SHA-256 of the secret is stored
  - duplicate id -> Conflict; unknown secret -> TokenNotFound
  - blacklist is idempotent and reports only the transition
  - rotate blacklists and inserts atomically; a spent secret writes nothing
  - delete_all_for_user removes one user's tokens and nothing else
  - sweep_expired removes tokens strictly before now, in both tables
  - verification tokens are single use and stored as digests
  - access tokens are never persisted

All tests use an in-memory SQLite store -- no file I/O.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import text

from auth.errors import Conflict, TokenNotFound, TokenRevoked
from auth.models import Token, TokenKind, VerificationToken
from auth.store import TokenStore, hash_secret


def _token(now: datetime, token_id: str = "t1", user_id: str = "u1", secret: str = "secret-1", **ttl) -> Token:
    return Token(
        id=token_id,
        user_id=user_id,
        secret=secret,
        kind=TokenKind.REFRESH,
        expires_at=now + timedelta(**(ttl or {"days": 7})),
        created_at=now,
    )


def _verification(
    now: datetime, token_id: str = "v1", user_id: str = "u1", secret: str = "verify-1", **ttl
) -> VerificationToken:
    return VerificationToken(
        id=token_id,
        user_id=user_id,
        secret=secret,
        expires_at=now + timedelta(**(ttl or {"hours": 24})),
        created_at=now,
    )


class TestCreateAndGet:
    def test_create_then_get(self, token_store: TokenStore, clock) -> None:
        now = clock()
        token_store.create(_token(now))
        stored = token_store.get_by_secret("secret-1")
        assert stored.id == "t1"
        assert stored.user_id == "u1"
        assert stored.secret == "secret-1"
        assert stored.kind is TokenKind.REFRESH
        assert stored.expires_at == now + timedelta(days=7)
        assert stored.created_at == now
        assert stored.blacklisted is False

    def test_secret_is_not_stored_in_plaintext(self, token_store: TokenStore, clock) -> None:
        token_store.create(_token(clock()))
        with token_store.engine.connect() as conn:
            rows = conn.execute(text("SELECT secret_hash FROM refresh_tokens")).fetchall()
        assert [row[0] for row in rows] == [hash_secret("secret-1")]
        assert "secret-1" not in rows[0][0]

    def test_unknown_secret_raises_not_found(self, token_store: TokenStore) -> None:
        with pytest.raises(TokenNotFound):
            token_store.get_by_secret("never-issued")

    def test_duplicate_id_raises_conflict(self, token_store: TokenStore, clock) -> None:
        token_store.create(_token(clock()))
        with pytest.raises(Conflict):
            token_store.create(_token(clock(), secret="secret-2"))

    def test_duplicate_secret_raises_conflict(self, token_store: TokenStore, clock) -> None:
        token_store.create(_token(clock()))
        with pytest.raises(Conflict):
            token_store.create(_token(clock(), token_id="t2"))

    def test_access_tokens_are_not_persisted(self, token_store: TokenStore, clock) -> None:
        now = clock()
        access = Token(
            id="a1",
            user_id="u1",
            secret="jwt",
            kind=TokenKind.ACCESS,
            expires_at=now + timedelta(minutes=15),
            created_at=now,
        )
        with pytest.raises(ValueError):
            token_store.create(access)


class TestBlacklist:
    def test_blacklist_reports_transition_once(self, token_store: TokenStore, clock) -> None:
        token_store.create(_token(clock()))
        assert token_store.blacklist("secret-1") is True
        assert token_store.blacklist("secret-1") is False
        assert token_store.get_by_secret("secret-1").blacklisted is True

    def test_blacklist_unknown_secret_is_noop(self, token_store: TokenStore) -> None:
        assert token_store.blacklist("never-issued") is False

    def test_blacklist_leaves_other_tokens(self, token_store: TokenStore, clock) -> None:
        token_store.create(_token(clock()))
        token_store.create(_token(clock(), token_id="t2", secret="secret-2"))
        token_store.blacklist("secret-1")
        assert token_store.get_by_secret("secret-2").blacklisted is False


class TestRotate:
    def test_rotate_blacklists_old_and_stores_new(self, token_store: TokenStore, clock) -> None:
        now = clock()
        token_store.create(_token(now))
        token_store.rotate("secret-1", _token(now, "t2", secret="secret-2"))

        assert token_store.get_by_secret("secret-1").blacklisted is True
        assert token_store.get_by_secret("secret-2").blacklisted is False
        assert token_store.count_for_user("u1") == 2

    def test_rotate_spent_secret_writes_nothing(self, token_store: TokenStore, clock) -> None:
        now = clock()
        token_store.create(_token(now))
        token_store.blacklist("secret-1")
        with pytest.raises(TokenRevoked):
            token_store.rotate("secret-1", _token(now, "t2", secret="secret-2"))
        with pytest.raises(TokenNotFound):
            token_store.get_by_secret("secret-2")

    def test_rotate_after_delete_writes_nothing(self, token_store: TokenStore, clock) -> None:
        now = clock()
        token_store.create(_token(now))
        token_store.delete_all_for_user("u1")
        with pytest.raises(TokenRevoked):
            token_store.rotate("secret-1", _token(now, "t2", secret="secret-2"))
        assert token_store.count_for_user("u1") == 0

    def test_rotate_duplicate_replacement_rolls_back(self, token_store: TokenStore, clock) -> None:
        now = clock()
        token_store.create(_token(now))
        token_store.create(_token(now, "t2", secret="secret-2"))
        with pytest.raises(Conflict):
            token_store.rotate("secret-1", _token(now, "t2", secret="secret-3"))
        assert token_store.get_by_secret("secret-1").blacklisted is False


class TestDeleteAndSweep:
    def test_delete_all_for_user(self, token_store: TokenStore, clock) -> None:
        now = clock()
        token_store.create(_token(now, "t1", "alice", "s1"))
        token_store.create(_token(now, "t2", "alice", "s2"))
        token_store.create(_token(now, "t3", "bob", "s3"))

        assert token_store.delete_all_for_user("alice") == 2
        assert token_store.count_for_user("alice") == 0
        assert token_store.count_for_user("bob") == 1
        with pytest.raises(TokenNotFound):
            token_store.get_by_secret("s1")

    def test_delete_all_for_user_without_tokens(self, token_store: TokenStore) -> None:
        assert token_store.delete_all_for_user("nobody") == 0

    def test_sweep_removes_only_expired(self, token_store: TokenStore, clock) -> None:
        now = clock()
        token_store.create(_token(now - timedelta(hours=2), "old", "u1", "s-old", hours=1))
        token_store.create(_token(now - timedelta(hours=1), "edge", "u1", "s-edge", hours=1))
        token_store.create(_token(now, "fresh", "u1", "s-fresh", days=7))

        assert token_store.sweep_expired(now) == 1
        # expires_at == now is kept by the sweep; refresh still rejects it as expired.
        assert token_store.get_by_secret("s-edge").expires_at == now
        assert token_store.get_by_secret("s-fresh").id == "fresh"
        with pytest.raises(TokenNotFound):
            token_store.get_by_secret("s-old")

    def test_sweep_includes_blacklisted(self, token_store: TokenStore, clock) -> None:
        now = clock()
        token_store.create(_token(now - timedelta(days=8), "t1", "u1", "s1", days=7))
        token_store.blacklist("s1")
        assert token_store.sweep_expired(now) == 1

    def test_sweep_includes_verification_tokens(self, token_store: TokenStore, clock) -> None:
        now = clock()
        token_store.create(_token(now - timedelta(days=8), "t1", "u1", "s1", days=7))
        token_store.create_verification(_verification(now - timedelta(days=2), "v-old", secret="verify-old"))
        token_store.create_verification(_verification(now, "v-new", secret="verify-new"))

        assert token_store.sweep_expired(now) == 2
        assert token_store.get_verification("verify-new").id == "v-new"
        with pytest.raises(TokenNotFound):
            token_store.get_verification("verify-old")


class TestVerificationTokens:
    def test_create_then_get(self, token_store: TokenStore, clock) -> None:
        now = clock()
        token_store.create_verification(_verification(now))
        stored = token_store.get_verification("verify-1")
        assert stored.user_id == "u1"
        assert stored.expires_at == now + timedelta(hours=24)
        assert stored.used is False

    def test_secret_is_not_stored_in_plaintext(self, token_store: TokenStore, clock) -> None:
        token_store.create_verification(_verification(clock()))
        with token_store.engine.connect() as conn:
            rows = conn.execute(text("SELECT secret_hash FROM verification_tokens")).fetchall()
        assert [row[0] for row in rows] == [hash_secret("verify-1")]

    def test_unknown_secret_raises_not_found(self, token_store: TokenStore) -> None:
        with pytest.raises(TokenNotFound):
            token_store.get_verification("never-issued")

    def test_mark_used_reports_transition_once(self, token_store: TokenStore, clock) -> None:
        token_store.create_verification(_verification(clock()))
        assert token_store.mark_verification_used("verify-1") is True
        assert token_store.mark_verification_used("verify-1") is False
        assert token_store.get_verification("verify-1").used is True

    def test_refresh_lookup_does_not_see_verification_tokens(self, token_store: TokenStore, clock) -> None:
        token_store.create_verification(_verification(clock()))
        with pytest.raises(TokenNotFound):
            token_store.get_by_secret("verify-1")
        assert token_store.count_for_user("u1") == 0

    def test_duplicate_id_raises_conflict(self, token_store: TokenStore, clock) -> None:
        token_store.create_verification(_verification(clock()))
        with pytest.raises(Conflict):
            token_store.create_verification(_verification(clock(), secret="verify-2"))


class TestTokenModel:
    def test_expiry_must_follow_creation(self, clock) -> None:
        now = clock()
        with pytest.raises(ValueError):
            Token(id="t", user_id="u", secret="s", kind=TokenKind.REFRESH, expires_at=now, created_at=now)

    def test_is_expired_is_closed_at_expiry(self, clock) -> None:
        token = _token(clock(), hours=1)
        assert token.is_expired(clock() + timedelta(minutes=59)) is False
        assert token.is_expired(clock() + timedelta(hours=1)) is True
