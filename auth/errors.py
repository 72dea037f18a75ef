"""
auth/errors.py -- Error taxonomy for authentication and authorization failures.

Every error carries a machine-readable code, a user-facing message, and the
HTTP status the API layer answers with. api/main.py renders them all through
the same ErrorResponse envelope, so route handlers simply raise.

Messages are deliberately generic: no usernames, no unlock timestamps, no
store internals.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses pin code and status_code; message may be overridden."""

    code = "auth_error"
    status_code = 400
    default_message = "Authentication failed."

    def __init__(self, message: str | None = None, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    """Unknown username or wrong password -- the two are indistinguishable."""

    code = "bad_credentials"
    status_code = 401
    default_message = "Invalid username or password."


class AccountLocked(AuthError):
    code = "account_locked"
    status_code = 423
    default_message = "Your account is temporarily locked. Please try again later."


class AccountDisabled(AuthError):
    """Banned or inactive account."""

    code = "account_disabled"
    status_code = 403
    default_message = "Your account has been disabled."


class Unauthorized(AuthError):
    """No credentials were presented at all."""

    code = "unauthorized"
    status_code = 401
    default_message = "Authentication required."


class TokenInvalid(AuthError):
    """Bad signature, malformed payload, wrong token type, or expired."""

    code = "invalid_token"
    status_code = 403
    default_message = "Invalid or expired token."


class Forbidden(AuthError):
    code = "forbidden"
    status_code = 403
    default_message = "You are not allowed to perform this action."


class Conflict(AuthError):
    code = "conflict"
    status_code = 409
    default_message = "The resource conflicts with an existing record."
