"""
auth/store.py -- SQLAlchemy Core persistence layer for users, refresh tokens and
email verification tokens.

Pattern: Repository + Data Mapper. UserStore and TokenStore are the
repositories; _row_to_user / _row_to_token are the mappers. The service never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Refresh- and verification-token secrets are never written to the
  database. The store keeps SHA-256(secret) in `secret_hash` and hashes the
  presented secret on every lookup. A plain digest (not HMAC) keeps refresh
  tokens valid across a SECRET_KEY rotation; 256 bits of token entropy make a
  keyed hash unnecessary.

  blacklisted is monotonic: every UPDATE touching it sets it to 1, guarded
  by `WHERE blacklisted = 0`, so concurrent logout/refresh on one secret
  resolve deterministically and exactly one caller observes the transition.
  rotate() runs that UPDATE and the replacement INSERT in a single
  transaction. Verification tokens follow the same rule with their `used`
  flag.

Concurrency:
  SQLite allows a single writer. Each store serializes its connection use
  through a lock so every row mutation is atomic from the caller's point of
  view. In-memory URLs use StaticPool so the worker threads used by
  asyncio.to_thread() all see the same database.

Errors:
  sqlalchemy.exc types never escape this module. IntegrityError becomes
  Conflict / EmailTaken, any other SQLAlchemyError becomes StorageUnavailable.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from auth.errors import Conflict, EmailTaken, StorageUnavailable, TokenNotFound, TokenRevoked, UserNotFound
from auth.models import Token, TokenKind, User, VerificationToken, normalize_email

logger = logging.getLogger("sessionkeeper.store")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'sessionkeeper.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(254), nullable=False, unique=True),  # normalized
    Column("user_name", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(255), nullable=False, server_default=""),
    Column("last_name", String(255), nullable=False, server_default=""),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),  # ISO 8601 UTC
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("secret_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("kind", String(16), nullable=False, server_default=TokenKind.REFRESH.value),
    # Epoch seconds (UTC). REAL compares correctly in SQL for the expiry sweep.
    Column("expires_at", Float, nullable=False, index=True),
    Column("blacklisted", Integer, nullable=False, server_default="0"),
    Column("created_at", Float, nullable=False),
)

_verification_tokens = Table(
    "verification_tokens",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("secret_hash", String(64), nullable=False, unique=True),
    Column("expires_at", Float, nullable=False, index=True),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", Float, nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _is_memory_url(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in db_url


def _make_engine(db_url: str) -> Engine:
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, pool_pre_ping=True)
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if _is_memory_url(db_url):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(db_url, **kwargs)
    if not _is_memory_url(db_url):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def hash_secret(secret: str) -> str:
    """Return the SHA-256 hex digest used to index a refresh-token secret."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_epoch(value: datetime) -> float:
    return value.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class _SqlStore:
    """Engine ownership, connection serialization and error translation."""

    def __init__(self, db_url: str) -> None:
        self.db_url = db_url
        try:
            self.engine: Engine = _make_engine(db_url)
            _metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Could not open database: {type(exc).__name__}") from exc
        self._lock = threading.RLock() if db_url.startswith("sqlite") else nullcontext()

    @contextmanager
    def _connect(self, action: str) -> Iterator[Connection]:
        """Yield a connection; translate non-integrity SQLAlchemy errors.

        IntegrityError is re-raised untouched so callers can map it to the
        domain-specific Conflict they need.
        """
        with self._lock:
            try:
                with self.engine.connect() as conn:
                    yield conn
            except IntegrityError:
                raise
            except SQLAlchemyError as exc:
                logger.error("Storage failure during %s: %s", action, type(exc).__name__)
                raise StorageUnavailable(f"Storage failure during {action}.") from exc

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore(_SqlStore):
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        store.create(User(id="u1", email="alice@example.com", user_name="alice", password_hash=digest))
        user = store.get_by_email("Alice@Example.com ")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        super().__init__(db_url)

    def create(self, user: User) -> None:
        """Insert a new user.

        Raises EmailTaken if the normalized email already exists and Conflict
        if the id is already taken.
        """
        if not user.password_hash:
            raise ValueError("password_hash must not be empty")
        email = normalize_email(user.email)
        now = datetime.now(timezone.utc)
        created_at = user.created_at or now
        updated_at = user.updated_at or created_at
        try:
            with self._connect("create user") as conn:
                conn.execute(
                    _users.insert().values(
                        id=user.id,
                        email=email,
                        user_name=user.user_name,
                        password_hash=user.password_hash,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        is_active=1 if user.is_active else 0,
                        is_verified=1 if user.is_verified else 0,
                        created_at=_to_iso(created_at),
                        updated_at=_to_iso(updated_at),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            if self._email_exists(email):
                raise EmailTaken() from exc
            raise Conflict("A user with that id already exists.") from exc
        user.email = email
        user.created_at = created_at
        user.updated_at = updated_at

    def get_by_email(self, email: str) -> User:
        """Look up a user by normalized email. Raises UserNotFound."""
        with self._connect("get user by email") as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        if row is None:
            raise UserNotFound()
        return _row_to_user(row)

    def get_by_id(self, user_id: str) -> User:
        """Look up a user by primary key. Raises UserNotFound."""
        with self._connect("get user by id") as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        if row is None:
            raise UserNotFound()
        return _row_to_user(row)

    def exists_by_email(self, email: str) -> bool:
        return self._email_exists(normalize_email(email))

    def _email_exists(self, email: str) -> bool:
        with self._connect("check email") as conn:
            count = conn.execute(select(func.count()).select_from(_users).where(_users.c.email == email)).scalar()
        return (count or 0) > 0

    def update(self, user: User) -> None:
        """Persist the mutable fields of an existing user.

        Raises UserNotFound if the id does not exist, EmailTaken if the new
        email collides with another account.
        """
        if not user.password_hash:
            raise ValueError("password_hash must not be empty")
        updated_at = user.updated_at or datetime.now(timezone.utc)
        try:
            with self._connect("update user") as conn:
                result = conn.execute(
                    _users.update()
                    .where(_users.c.id == user.id)
                    .values(
                        email=normalize_email(user.email),
                        user_name=user.user_name,
                        password_hash=user.password_hash,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        is_active=1 if user.is_active else 0,
                        is_verified=1 if user.is_verified else 0,
                        updated_at=_to_iso(updated_at),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise EmailTaken() from exc
        if result.rowcount == 0:
            raise UserNotFound()
        user.updated_at = updated_at

    def mark_verified(self, user_id: str, when: datetime) -> None:
        """Set is_verified without touching any other column. Raises UserNotFound."""
        with self._connect("mark user verified") as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(is_verified=1, updated_at=_to_iso(when))
            )
            conn.commit()
        if result.rowcount == 0:
            raise UserNotFound()

    def set_active(self, user_id: str, active: bool) -> None:
        """Activate or deactivate an account. Raises UserNotFound."""
        with self._connect("set user active") as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(is_active=1 if active else 0, updated_at=_to_iso(datetime.now(timezone.utc)))
            )
            conn.commit()
        if result.rowcount == 0:
            raise UserNotFound()


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class TokenStore(_SqlStore):
    """Repository for persisted refresh tokens and email verification tokens.

    Usage:
        tokens = TokenStore("sqlite:///:memory:")
        tokens.create(token)
        tokens.get_by_secret(raw_secret)      # Token or TokenNotFound
        tokens.blacklist(raw_secret)          # idempotent
        tokens.rotate(raw_secret, replacement)  # atomic blacklist + insert
        tokens.sweep_expired(now)             # call periodically
        tokens.create_verification(vtoken)
        tokens.mark_verification_used(raw)    # single use
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        super().__init__(db_url)

    def create(self, token: Token) -> None:
        """Persist a refresh token. Raises Conflict if the id (or secret) already exists."""
        if token.kind is not TokenKind.REFRESH:
            raise ValueError("only refresh tokens are persisted")
        try:
            with self._connect("create token") as conn:
                conn.execute(_refresh_tokens.insert().values(**_token_values(token)))
                conn.commit()
        except IntegrityError as exc:
            raise Conflict("A token with that id already exists.") from exc

    def rotate(self, old_secret: str, new_token: Token) -> None:
        """Blacklist old_secret and persist new_token in one transaction.

        Raises TokenRevoked, with nothing written, when old_secret is unknown
        or already blacklisted. A concurrent delete_all_for_user() therefore
        lands either before the rotation (which is then refused) or after it
        (and removes the replacement too).
        """
        if new_token.kind is not TokenKind.REFRESH:
            raise ValueError("only refresh tokens are persisted")
        try:
            with self._connect("rotate token") as conn:
                result = conn.execute(
                    _refresh_tokens.update()
                    .where(
                        (_refresh_tokens.c.secret_hash == hash_secret(old_secret))
                        & (_refresh_tokens.c.blacklisted == 0)
                    )
                    .values(blacklisted=1)
                )
                if result.rowcount == 0:
                    conn.rollback()
                    raise TokenRevoked()
                conn.execute(_refresh_tokens.insert().values(**_token_values(new_token)))
                conn.commit()
        except IntegrityError as exc:
            raise Conflict("A token with that id already exists.") from exc

    def get_by_secret(self, secret: str) -> Token:
        """Return the stored token for secret. Raises TokenNotFound."""
        with self._connect("get token") as conn:
            row = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.secret_hash == hash_secret(secret))
            ).fetchone()
        if row is None:
            raise TokenNotFound()
        return _row_to_token(row, secret)

    def blacklist(self, secret: str) -> bool:
        """Mark a token revoked. Idempotent; unknown secrets are a silent no-op.

        Returns True only for the call that flipped the flag, which lets
        refresh-token rotation detect a concurrent reuse of the same secret.
        """
        with self._connect("blacklist token") as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.secret_hash == hash_secret(secret)) & (_refresh_tokens.c.blacklisted == 0))
                .values(blacklisted=1)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_all_for_user(self, user_id: str) -> int:
        """Delete every refresh token owned by user_id. Returns the number removed."""
        with self._connect("delete user tokens") as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def sweep_expired(self, now: datetime) -> int:
        """Delete refresh and verification tokens whose expires_at is before now.

        Returns the total number of rows removed from both tables.
        """
        cutoff = _to_epoch(now)
        with self._connect("sweep expired tokens") as conn:
            refresh = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at < cutoff))
            verification = conn.execute(
                _verification_tokens.delete().where(_verification_tokens.c.expires_at < cutoff)
            )
            conn.commit()
        return refresh.rowcount + verification.rowcount

    def count_for_user(self, user_id: str) -> int:
        with self._connect("count user tokens") as conn:
            count = conn.execute(
                select(func.count()).select_from(_refresh_tokens).where(_refresh_tokens.c.user_id == user_id)
            ).scalar()
        return count or 0

    # Email verification tokens

    def create_verification(self, token: VerificationToken) -> None:
        """Persist a verification token. Raises Conflict if the id (or secret) already exists."""
        try:
            with self._connect("create verification token") as conn:
                conn.execute(
                    _verification_tokens.insert().values(
                        id=token.id,
                        user_id=token.user_id,
                        secret_hash=hash_secret(token.secret),
                        expires_at=_to_epoch(token.expires_at),
                        used=1 if token.used else 0,
                        created_at=_to_epoch(token.created_at),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise Conflict("A verification token with that id already exists.") from exc

    def get_verification(self, secret: str) -> VerificationToken:
        """Return the stored verification token for secret. Raises TokenNotFound."""
        with self._connect("get verification token") as conn:
            row = conn.execute(
                _verification_tokens.select().where(_verification_tokens.c.secret_hash == hash_secret(secret))
            ).fetchone()
        if row is None:
            raise TokenNotFound()
        return VerificationToken(
            id=row.id,
            user_id=row.user_id,
            secret=secret,
            expires_at=_from_epoch(row.expires_at),
            created_at=_from_epoch(row.created_at),
            used=bool(row.used),
        )

    def mark_verification_used(self, secret: str) -> bool:
        """Flag a verification token as used. True only for the call that flipped it."""
        with self._connect("use verification token") as conn:
            result = conn.execute(
                _verification_tokens.update()
                .where(
                    (_verification_tokens.c.secret_hash == hash_secret(secret)) & (_verification_tokens.c.used == 0)
                )
                .values(used=1)
            )
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        user_name=row.user_name,
        password_hash=row.password_hash,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        is_active=bool(row.is_active),
        is_verified=bool(row.is_verified),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _token_values(token: Token) -> dict:
    return {
        "id": token.id,
        "user_id": token.user_id,
        "secret_hash": hash_secret(token.secret),
        "kind": token.kind.value,
        "expires_at": _to_epoch(token.expires_at),
        "blacklisted": 1 if token.blacklisted else 0,
        "created_at": _to_epoch(token.created_at),
    }


def _row_to_token(row, secret: str) -> Token:
    return Token(
        id=row.id,
        user_id=row.user_id,
        secret=secret,
        kind=TokenKind(row.kind),
        expires_at=_from_epoch(row.expires_at),
        created_at=_from_epoch(row.created_at),
        blacklisted=bool(row.blacklisted),
    )
