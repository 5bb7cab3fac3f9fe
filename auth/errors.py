"""
auth/errors.py -- Error taxonomy for the auth core.

Every failure the auth layer reports to a caller is one of these classes.
The HTTP layer maps them to a status code and the shared error envelope in a
single exception handler (api/main.py), so routes never build 4xx responses by
hand.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. status_code / code drive the HTTP error envelope."""

    status_code: int = 400
    code: str = "bad_request"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class BadRequestError(AuthError):
    """Malformed input that passed schema validation (e.g. a bad URL)."""

    status_code = 400
    code = "bad_request"


class UnauthorizedError(AuthError):
    """Missing, bad or expired credentials or tokens."""

    status_code = 401
    code = "unauthorized"


class InvalidTokenError(UnauthorizedError):
    """JWT signature, structure or type check failed."""


class TokenExpiredError(UnauthorizedError):
    """JWT signature is valid but exp has passed."""


class ForbiddenError(AuthError):
    """Authenticated, but the action violates a policy."""

    status_code = 403
    code = "forbidden"


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"


class ConflictError(AuthError):
    """Duplicate email, username or provider link."""

    status_code = 409
    code = "conflict"
