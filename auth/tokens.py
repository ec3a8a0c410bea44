"""
auth/tokens.py -- Access-token Claims Codec (signed, time-bounded JWTs).

Security design decisions:
  JWT: python-jose with HS256 and a single shared secret. Tokens carry
       user_id, email, user_name, iss, aud, iat and exp. Rotating the secret
       invalidates every outstanding access token -- accepted behavior.

  Verification order in parse():
       1. Structure  -- get_unverified_claims() must succeed, else MalformedToken.
       2. Signature  -- jwt.decode() under the configured key and algorithm,
                        else InvalidSignature. A token announcing any other
                        algorithm (including "none") fails here too.
       3. Issuer, audience -- compared by hand so each mismatch has its own
                        error kind.
       4. Expiry     -- against the injected clock, not jose's wall clock, so
                        tests are deterministic. now >= exp is expired.

  Access tokens are never stored and cannot be revoked mid-lifetime; the
  15-minute TTL bounds the exposure window.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.errors import AccessTokenExpired, InvalidAudience, InvalidIssuer, InvalidSignature, MalformedToken
from auth.models import Claims
from core.clock import Clock, utc_now

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("sessionkeeper.auth")

_ALGORITHM = "HS256"

ACCESS_TOKEN_TTL_SECONDS = 15 * 60

# Signature, issuer, audience and expiry are checked explicitly in parse().
_DECODE_OPTIONS = {
    "verify_aud": False,
    "verify_iss": False,
    "verify_exp": False,
    "verify_nbf": False,
}


class JwtClaimsCodec:
    """Issue and parse HS256 access tokens bound to one issuer/audience pair.

    Usage:
        codec = JwtClaimsCodec(secret_key, issuer="sessionkeeper", audience="web")
        token, expires_at = codec.issue("u-1", "alice@example.com", "alice")
        claims = codec.parse(token)
    """

    def __init__(
        self,
        secret_key: str,
        issuer: str,
        audience: str,
        ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret_key = secret_key
        self.issuer = issuer
        self.audience = audience
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> JwtClaimsCodec:
        return cls(
            settings.secret_key,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            ttl_seconds=settings.access_token_ttl_seconds,
            clock=clock,
        )

    def issue(self, user_id: str, email: str, user_name: str) -> tuple[str, datetime]:
        """Return (signed token, embedded expiry).

        exp and iat are whole seconds (RFC 7519 NumericDate), so the returned
        expiry is truncated to the second to match what parse() will report.
        The clock is floored before the ttl is added so exp - iat is exactly
        the configured ttl.
        """
        issued_at = int(self._clock().timestamp())
        expires = issued_at + int(self.ttl.total_seconds())
        payload = {
            "user_id": user_id,
            "email": email,
            "user_name": user_name,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": issued_at,
            "exp": expires,
        }
        token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        return token, datetime.fromtimestamp(expires, tz=timezone.utc)

    def parse(self, token: str) -> Claims:
        """Verify token and return its Claims. Raises an InvalidToken/TokenExpired subclass."""
        try:
            jwt.get_unverified_claims(token)
        except (JWTError, AttributeError, TypeError) as exc:
            raise MalformedToken() from exc

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except JWTError as exc:
            raise InvalidSignature() from exc

        if payload.get("iss") != self.issuer:
            raise InvalidIssuer()
        if payload.get("aud") != self.audience:
            raise InvalidAudience()

        exp = payload.get("exp")
        user_id = payload.get("user_id")
        if not isinstance(exp, (int, float)) or not isinstance(user_id, str) or not user_id:
            raise MalformedToken("Token is missing required claims.")

        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        if self._clock() >= expires_at:
            raise AccessTokenExpired()

        return Claims(
            user_id=user_id,
            email=str(payload.get("email", "")),
            user_name=str(payload.get("user_name", "")),
            expires_at=expires_at,
        )
