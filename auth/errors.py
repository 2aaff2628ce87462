"""
auth/errors.py -- Exception taxonomy for the auth core.

Each exception carries the HTTP status and stable error code the API layer
maps it to, so api/main.py needs one handler for the whole family.

Messages are deliberately generic. Internal distinctions (expired vs revoked
vs reused, unknown user vs wrong password) go to the log, never into these
messages -- a distinct message per cause would hand attackers an oracle.
"""

from __future__ import annotations

INVALID_TOKEN_MESSAGE = "Invalid or expired token"
INVALID_REFRESH_TOKEN_MESSAGE = "Invalid or expired refresh token"
INVALID_RESET_TOKEN_MESSAGE = "Invalid or expired reset token"
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


class AuthError(Exception):
    """Base class for auth failures that map to an HTTP response."""

    status_code: int = 400
    code: str = "bad_request"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidTokenError(AuthError):
    """A JWT failed signature, algorithm, claim, or expiry verification."""

    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = INVALID_TOKEN_MESSAGE) -> None:
        super().__init__(message)


class UnauthorizedError(AuthError):
    status_code = 401
    code = "unauthorized"


class ConflictError(AuthError):
    """Duplicate registration. The one flow allowed to confirm an account exists."""

    status_code = 409
    code = "conflict"


class ProviderNotSupportedError(AuthError):
    status_code = 400
    code = "unsupported_provider"
