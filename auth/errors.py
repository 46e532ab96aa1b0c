"""
auth/errors.py -- Error taxonomy for the authentication core.

Every error that leaves auth/ is one of the classes below, so the HTTP
boundary can map it to a status code without inspecting messages. Store
implementations translate driver errors into this taxonomy; raw SQLAlchemy
or requests exceptions never propagate past auth/.

Messages are deliberately generic. InvalidCredentials never says whether the
e-mail or the password was wrong.

Layer rule: no imports from api/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. Subclasses pin code, message and the default HTTP status."""

    code: str = "auth_error"
    message: str = "Authentication error."
    status_code: int = 500

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    """Unknown e-mail or wrong password -- intentionally indistinguishable."""

    code = "invalid_credentials"
    message = "Invalid email or password."
    status_code = 401


class UserExists(AuthError):
    code = "user_exists"
    message = "User already exists."
    status_code = 409


class NotFound(AuthError):
    code = "not_found"
    message = "User not found."
    status_code = 404


class Unauthenticated(AuthError):
    """Token pair invalid and not refreshable."""

    code = "unauthenticated"
    message = "User unauthorized."
    status_code = 401


class Transient(AuthError):
    """I/O failure or timeout. The caller may retry."""

    code = "transient"
    message = "Temporary failure, retry later."
    status_code = 503


class Internal(AuthError):
    code = "internal_error"
    message = "Internal error."
    status_code = 500
