"""
auth/service.py -- Auth Orchestrator: register, login, logout, refresh, validate,
change password, email verification.

Pattern: Use-case service with explicit dependencies. Every capability
(hasher, token generator, id generator, claims codec, stores, notifier,
clock) is passed in through the constructor; there is no module-level state.
AuthService.from_settings() wires the production defaults.

Session state machine, from the service's point of view:

    Anonymous --login--> Authenticated(access, refresh)
    Authenticated --refresh--> Refreshed(new access [, new refresh])
    Authenticated --logout--> LoggedOut   (refresh token blacklisted)
    Authenticated --time--> Expired       (refresh token past expires_at)

Concurrency:
  The service is stateless between calls. Blocking work -- bcrypt and store
  I/O -- runs in worker threads via asyncio.to_thread() under
  asyncio.wait_for(), so a slow call is bounded and cancelling the awaiting
  request task (e.g. client disconnect) unwinds the coroutine immediately.
  Store timeouts surface as StorageUnavailable, hashing timeouts as
  OperationTimeout. Nothing is retried here; retries belong to the caller.

Security:
  Login answers "no such user" and "wrong password" with the same
  InvalidCredentials instance message, and runs one bcrypt verification in
  both cases (dummy hash for unknown emails) so timing does not leak account
  existence either.

  Logout never reports whether the token existed.

  Refresh-token rotation (rotate_refresh=True): TokenRepository.rotate()
  blacklists the presented token and stores its replacement in one
  transaction. Of two concurrent refreshes with the same secret exactly one
  wins; the other gets TokenRevoked. Replaying a rotated token also gets
  TokenRevoked.

  ChangePassword deletes every refresh token of the user, persists the new
  hash, then deletes again to catch a session opened in between. A failure
  at any step leaves the account over-revoked, never half-changed, so a
  stolen session cannot outlive a password change.

  Email verification tokens are opaque, single use and expire after
  verification_ttl (24h by default). Register issues one best effort and
  hands it to the notifier; verify_email() consumes it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from datetime import timedelta
from typing import TYPE_CHECKING, TypeVar

from auth.errors import (
    AccountDeactivated,
    AuthError,
    EmailTaken,
    InvalidCredentials,
    InvalidToken,
    OperationTimeout,
    StorageUnavailable,
    TokenExpired,
    TokenNotFound,
    TokenRevoked,
    UserNotFound,
    ValidationFailed,
)
from auth.interfaces import (
    ClaimsCodec,
    IdGenerator,
    PasswordHasher,
    RegistrationNotifier,
    TokenGenerator,
    TokenRepository,
    UserRepository,
)
from auth.models import (
    AuthTokens,
    Claims,
    RegisterRequest,
    Token,
    TokenKind,
    User,
    UserProfile,
    VerificationToken,
    normalize_email,
)
from auth.notify import LoggingNotifier
from auth.opaque import OpaqueTokenGenerator, RandomIdGenerator
from auth.passwords import BcryptHasher, ensure_strong_password
from auth.tokens import JwtClaimsCodec
from core.clock import Clock, utc_now

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("sessionkeeper.auth")

T = TypeVar("T")

REFRESH_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60
REFRESH_TOKEN_BYTES = 32
VERIFICATION_TOKEN_TTL_SECONDS = 24 * 60 * 60

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_MAX_EMAIL_LENGTH = 254


class AuthService:
    """Compose hasher, generators, codec and stores into the session use cases.

    Usage:
        service = AuthService.from_settings(settings, user_store, token_store)
        profile = await service.register(RegisterRequest(...))
        tokens = await service.login("alice@example.com", "Str0ng!Pass")
        claims = await service.validate(tokens.access_token)
        await service.logout(tokens.refresh_token)
    """

    def __init__(
        self,
        users: UserRepository,
        tokens: TokenRepository,
        hasher: PasswordHasher,
        codec: ClaimsCodec,
        token_generator: TokenGenerator | None = None,
        id_generator: IdGenerator | None = None,
        notifier: RegistrationNotifier | None = None,
        clock: Clock = utc_now,
        refresh_ttl_seconds: int = REFRESH_TOKEN_TTL_SECONDS,
        refresh_token_bytes: int = REFRESH_TOKEN_BYTES,
        rotate_refresh: bool = True,
        verification_ttl_seconds: int = VERIFICATION_TOKEN_TTL_SECONDS,
        store_timeout: float = 5.0,
        hash_timeout: float = 5.0,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self.hasher = hasher
        self.codec = codec
        self.token_generator = token_generator or OpaqueTokenGenerator()
        self.id_generator = id_generator or RandomIdGenerator()
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock
        self.refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self.refresh_token_bytes = refresh_token_bytes
        self.rotate_refresh = rotate_refresh
        self.verification_ttl = timedelta(seconds=verification_ttl_seconds)
        self.store_timeout = store_timeout
        self.hash_timeout = hash_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        users: UserRepository,
        tokens: TokenRepository,
        clock: Clock = utc_now,
        notifier: RegistrationNotifier | None = None,
    ) -> AuthService:
        return cls(
            users=users,
            tokens=tokens,
            hasher=BcryptHasher(rounds=settings.bcrypt_rounds),
            codec=JwtClaimsCodec.from_settings(settings, clock=clock),
            notifier=notifier,
            clock=clock,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            refresh_token_bytes=settings.refresh_token_bytes,
            rotate_refresh=settings.rotate_refresh_tokens,
            verification_ttl_seconds=settings.verification_token_ttl_seconds,
            store_timeout=settings.store_timeout_seconds,
            hash_timeout=settings.hash_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Blocking-call helpers
    # ------------------------------------------------------------------

    async def _store(self, func: Callable[..., T], *args) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.store_timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Store call %s timed out after %.1fs", getattr(func, "__name__", func), self.store_timeout)
            raise StorageUnavailable("Storage call timed out.") from exc

    async def _hash(self, plaintext: str) -> str:
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.hasher.hash, plaintext), timeout=self.hash_timeout)
        except asyncio.TimeoutError as exc:
            raise OperationTimeout("Password hashing timed out.") from exc

    async def _verify(self, digest: str, plaintext: str) -> bool:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.hasher.verify, digest, plaintext), timeout=self.hash_timeout
            )
        except asyncio.TimeoutError as exc:
            raise OperationTimeout("Password verification timed out.") from exc

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    async def register(self, request: RegisterRequest) -> UserProfile:
        """Create an account and return its sanitized profile.

        Raises ValidationFailed (field-level), WeakPassword, EmailTaken.
        """
        _validate_registration(request)
        ensure_strong_password(request.password)

        email = normalize_email(request.email)
        if await self._store(self.users.exists_by_email, email):
            raise EmailTaken()

        password_hash = await self._hash(request.password)
        now = self.clock()
        user = User(
            id=self.id_generator.generate(),
            email=email,
            user_name=request.user_name.strip(),
            password_hash=password_hash,
            first_name=request.first_name.strip(),
            last_name=request.last_name.strip(),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        # A concurrent registration can still win the race; the store then raises EmailTaken.
        await self._store(self.users.create, user)
        profile = UserProfile.from_user(user)
        logger.info("User registered (user_id=%s)", user.id)

        # Best effort; resend_verification() replaces a lost token.
        verification_secret = None
        try:
            verification_secret = (await self.issue_verification_token(user.id)).secret
        except AuthError as exc:
            logger.warning("Verification token not issued (user_id=%s reason=%s)", user.id, exc.code)

        try:
            self.notifier.user_registered(profile, verification_secret)
        except Exception:
            logger.warning("Registration notification failed (user_id=%s)", user.id, exc_info=True)
        return profile

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> AuthTokens:
        """Authenticate with email and password and open a session.

        Raises InvalidCredentials (unknown email or wrong password, same
        message for both) or AccountDeactivated.
        """
        try:
            user = await self._store(self.users.get_by_email, normalize_email(email))
        except UserNotFound:
            # Equalize timing -- do NOT return before running bcrypt.
            await self._verify(self.hasher.dummy_hash, password or "")
            logger.info("Login failed (reason=invalid_credentials)")
            raise InvalidCredentials() from None

        if not await self._verify(user.password_hash, password or ""):
            logger.info("Login failed (reason=invalid_credentials)")
            raise InvalidCredentials()
        if not user.is_active:
            logger.info("Login refused (reason=account_deactivated user_id=%s)", user.id)
            raise AccountDeactivated()

        access_token, access_expires_at = self.codec.issue(user.id, user.email, user.user_name)
        refresh = await self._issue_refresh_token(user.id)
        logger.info("Login succeeded (user_id=%s)", user.id)
        return AuthTokens(
            access_token=access_token,
            access_expires_at=access_expires_at,
            refresh_token=refresh.secret,
            refresh_expires_at=refresh.expires_at,
            user=UserProfile.from_user(user),
        )

    async def _issue_refresh_token(self, user_id: str) -> Token:
        token = self._new_refresh_token(user_id)
        await self._store(self.tokens.create, token)
        return token

    def _new_refresh_token(self, user_id: str) -> Token:
        now = self.clock()
        return Token(
            id=self.id_generator.generate(),
            user_id=user_id,
            secret=self.token_generator.generate(self.refresh_token_bytes),
            kind=TokenKind.REFRESH,
            expires_at=now + self.refresh_ttl,
            created_at=now,
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    async def logout(self, secret: str) -> None:
        """Revoke a refresh token. Succeeds whether or not the token exists.

        Access tokens are not stored, so passing one is a harmless no-op;
        it stays valid until its own expiry.
        """
        if not secret:
            return
        revoked = await self._store(self.tokens.blacklist, secret)
        if revoked:
            logger.info("Refresh token revoked by logout")

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, refresh_secret: str) -> AuthTokens:
        """Mint a new access token from a refresh token.

        Raises InvalidToken (unknown secret or owner gone), TokenExpired,
        TokenRevoked, AccountDeactivated.
        """
        if not refresh_secret:
            raise InvalidToken()
        try:
            stored = await self._store(self.tokens.get_by_secret, refresh_secret)
        except TokenNotFound:
            raise InvalidToken() from None

        if stored.is_expired(self.clock()):
            raise TokenExpired("Refresh token has expired.")
        if stored.blacklisted:
            raise TokenRevoked()

        try:
            user = await self._store(self.users.get_by_id, stored.user_id)
        except UserNotFound:
            raise InvalidToken() from None
        if not user.is_active:
            raise AccountDeactivated()

        refresh_secret_out = stored.secret
        refresh_expires_at = stored.expires_at
        if self.rotate_refresh:
            # Raises TokenRevoked unless this call flips the flag.
            replacement = self._new_refresh_token(user.id)
            await self._store(self.tokens.rotate, stored.secret, replacement)
            refresh_secret_out = replacement.secret
            refresh_expires_at = replacement.expires_at

        access_token, access_expires_at = self.codec.issue(user.id, user.email, user.user_name)
        logger.info("Access token refreshed (user_id=%s rotated=%s)", user.id, self.rotate_refresh)
        return AuthTokens(
            access_token=access_token,
            access_expires_at=access_expires_at,
            refresh_token=refresh_secret_out,
            refresh_expires_at=refresh_expires_at,
            user=UserProfile.from_user(user),
        )

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    async def validate(self, access_token: str) -> Claims:
        """Verify an access token. Codec errors propagate unchanged.

        Never consults the token store -- access tokens cannot be revoked
        before they expire.
        """
        return self.codec.parse(access_token)

    # ------------------------------------------------------------------
    # Password change and revocation
    # ------------------------------------------------------------------

    async def change_password(self, user_id: str, old_password: str, new_password: str) -> None:
        """Replace a user's password and end all of their refresh sessions.

        Raises UserNotFound, InvalidCredentials (old password wrong),
        WeakPassword (new password rejected by policy). Sessions are deleted
        before and after the hash is written; if either step fails the
        caller sees StorageUnavailable and no pre-existing session survives
        a persisted password change.
        """
        user = await self._store(self.users.get_by_id, user_id)
        if not await self._verify(user.password_hash, old_password or ""):
            logger.info("Password change refused (reason=invalid_credentials user_id=%s)", user_id)
            raise InvalidCredentials()
        ensure_strong_password(new_password, field="new_password")
        password_hash = await self._hash(new_password)

        removed = await self._store(self.tokens.delete_all_for_user, user.id)
        user.password_hash = password_hash
        user.updated_at = self.clock()
        await self._store(self.users.update, user)
        removed += await self._store(self.tokens.delete_all_for_user, user.id)
        logger.info("Password changed (user_id=%s sessions_revoked=%d)", user.id, removed)

    async def revoke_all_sessions(self, user_id: str) -> int:
        """Delete every refresh token of a user (e.g. account compromise)."""
        removed = await self._store(self.tokens.delete_all_for_user, user_id)
        logger.info("All sessions revoked (user_id=%s count=%d)", user_id, removed)
        return removed

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def issue_verification_token(self, user_id: str) -> VerificationToken:
        """Persist a fresh single-use verification token for user_id."""
        now = self.clock()
        token = VerificationToken(
            id=self.id_generator.generate(),
            user_id=user_id,
            secret=self.token_generator.generate(self.refresh_token_bytes),
            expires_at=now + self.verification_ttl,
            created_at=now,
        )
        await self._store(self.tokens.create_verification, token)
        return token

    async def verify_email(self, secret: str) -> UserProfile:
        """Consume a verification token and mark its owner's email verified.

        Raises InvalidToken (unknown secret or owner gone), TokenExpired,
        TokenRevoked (already used).
        """
        if not secret:
            raise InvalidToken()
        try:
            stored = await self._store(self.tokens.get_verification, secret)
        except TokenNotFound:
            raise InvalidToken() from None

        if stored.is_expired(self.clock()):
            raise TokenExpired("Verification token has expired.")
        if stored.used:
            raise TokenRevoked("Verification token has already been used.")

        try:
            user = await self._store(self.users.get_by_id, stored.user_id)
        except UserNotFound:
            raise InvalidToken() from None

        if not await self._store(self.tokens.mark_verification_used, secret):
            raise TokenRevoked("Verification token has already been used.")
        if not user.is_verified:
            await self._store(self.users.mark_verified, user.id, self.clock())
            user.is_verified = True
        logger.info("Email verified (user_id=%s)", user.id)
        return UserProfile.from_user(user)

    async def resend_verification(self, email: str) -> None:
        """Issue a new verification token for an unverified account.

        Returns None whether or not the email is registered, so the caller
        cannot enumerate accounts. Verified and unknown accounts are no-ops.
        """
        try:
            user = await self._store(self.users.get_by_email, normalize_email(email))
        except UserNotFound:
            logger.info("Verification resend skipped (reason=unknown_email)")
            return
        if user.is_verified:
            logger.info("Verification resend skipped (reason=already_verified user_id=%s)", user.id)
            return

        token = await self.issue_verification_token(user.id)
        try:
            self.notifier.verification_requested(UserProfile.from_user(user), token.secret)
        except Exception:
            logger.warning("Verification notification failed (user_id=%s)", user.id, exc_info=True)


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------


def _validate_registration(request: RegisterRequest) -> None:
    """Collect every field-level problem and raise them together."""
    fields: dict[str, str] = {}

    email = (request.email or "").strip()
    if not email:
        fields["email"] = "email is required"
    elif len(email) > _MAX_EMAIL_LENGTH:
        fields["email"] = "email is too long"
    elif not _EMAIL_RE.match(email):
        fields["email"] = "invalid email format"

    if not (request.user_name or "").strip():
        fields["user_name"] = "user name is required"

    if not (request.password or "").strip():
        fields["password"] = "password is required"
    elif request.password != request.confirm_password:
        fields["confirm_password"] = "passwords do not match"

    if fields:
        raise ValidationFailed(fields)
