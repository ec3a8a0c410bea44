"""
auth/errors.py -- Typed error taxonomy for the credential and session core.

Every failure that crosses the auth/ boundary is an AuthError subclass. Each
class carries a stable machine-readable `code` and the HTTP `status_code` the
api/ layer maps it to, so route handlers never pattern-match on messages.

Propagation policy:
  Credential and token errors are deliberately coarse. InvalidCredentials
  covers both "no such user" and "wrong password" and always carries the same
  message, so a caller cannot enumerate accounts.

  Validation errors are field-addressable: ValidationFailed.fields maps a
  request field name to a human-readable problem.

  Storage failures are wrapped in StorageUnavailable (chained with
  `raise ... from exc`) at the store boundary. sqlalchemy exception types
  never escape auth/.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by auth/."""

    code: str = "auth_error"
    status_code: int = 400
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None, *, detail: dict | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail or {}
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Credentials and account state
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid email or password."


class AccountDeactivated(AuthError):
    code = "account_deactivated"
    status_code = 403
    default_message = "Account is deactivated."


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class InvalidToken(AuthError):
    code = "invalid_token"
    status_code = 401
    default_message = "Invalid token."


class MalformedToken(InvalidToken):
    code = "malformed_token"
    default_message = "Token could not be decoded."


class InvalidSignature(InvalidToken):
    code = "invalid_signature"
    default_message = "Token signature verification failed."


class InvalidIssuer(InvalidToken):
    code = "invalid_issuer"
    default_message = "Token issuer is not accepted."


class InvalidAudience(InvalidToken):
    code = "invalid_audience"
    default_message = "Token audience is not accepted."


class TokenExpired(AuthError):
    code = "token_expired"
    status_code = 401
    default_message = "Token has expired."


class AccessTokenExpired(TokenExpired):
    code = "access_token_expired"
    default_message = "Access token has expired."


class TokenRevoked(AuthError):
    code = "token_revoked"
    status_code = 401
    default_message = "Token has been revoked."


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationFailed(AuthError):
    """One or more request fields are invalid.

    `fields` maps field name -> problem description and is mirrored into
    `detail["fields"]` for the HTTP error envelope.
    """

    code = "validation_failed"
    status_code = 422
    default_message = "Request validation failed."

    def __init__(self, fields: dict[str, str], message: str | None = None) -> None:
        self.fields = dict(fields)
        super().__init__(message, detail={"fields": self.fields})


class WeakPassword(ValidationFailed):
    code = "weak_password"
    default_message = "Password does not meet security requirements."

    def __init__(self, violations: list[str], field: str = "password") -> None:
        self.violations = list(violations)
        super().__init__({field: ", ".join(self.violations)})
        self.detail["violations"] = self.violations


# ---------------------------------------------------------------------------
# Store outcomes
# ---------------------------------------------------------------------------


class NotFound(AuthError):
    code = "not_found"
    status_code = 404
    default_message = "Record not found."


class UserNotFound(NotFound):
    """Internal lookups only -- never surfaced to an unauthenticated caller."""

    code = "user_not_found"
    default_message = "User not found."


class TokenNotFound(NotFound):
    code = "token_not_found"
    default_message = "Token not found."


class Conflict(AuthError):
    code = "conflict"
    status_code = 409
    default_message = "Record already exists."


class EmailTaken(Conflict):
    code = "email_taken"
    default_message = "Email is already registered."


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class StorageUnavailable(AuthError):
    code = "storage_unavailable"
    status_code = 503
    default_message = "Storage is unavailable."


class OperationTimeout(AuthError):
    code = "operation_timeout"
    status_code = 503
    default_message = "Operation timed out."
