"""Error taxonomy for authentication and access control.

Services raise these; the HTTP layer maps them to responses using the
``status_code`` carried by each class.
"""
from __future__ import annotations


class GatekeeperError(Exception):
    """Base exception for all Gatekeeper errors."""

    status_code: int = 400
    default_detail: str = "Request failed"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(GatekeeperError):
    """Raised when input is malformed beyond what schema validation catches."""

    status_code = 422
    default_detail = "Invalid input"


class InvalidCredentials(GatekeeperError):
    status_code = 401
    default_detail = "Invalid credentials"


class DuplicateEmail(GatekeeperError):
    status_code = 409
    default_detail = "A user with that email already exists"


class EmailNotFound(GatekeeperError):
    status_code = 404
    default_detail = "Email is not registered"


class UserNotFound(GatekeeperError):
    status_code = 404
    default_detail = "User not found"


class RoleNotFound(GatekeeperError):
    status_code = 404
    default_detail = "Role not found"


class PermissionNotFound(GatekeeperError):
    status_code = 404
    default_detail = "Permission not found"


class DuplicateRole(GatekeeperError):
    status_code = 409
    default_detail = "A role with that name already exists"


class DuplicatePermission(GatekeeperError):
    status_code = 409
    default_detail = "That permission already exists"


class PermissionNotAssigned(GatekeeperError):
    status_code = 400
    default_detail = "The role does not have this permission"


class InvalidToken(GatekeeperError):
    """Session token failed signature or structural checks."""

    status_code = 401
    default_detail = "Invalid session, please sign in again"


class ExpiredToken(GatekeeperError):
    """Session token was valid but its lifetime has elapsed."""

    status_code = 401
    default_detail = "Session has expired, please sign in again"


class InvalidOrExpiredToken(GatekeeperError):
    """Recovery token failed for any reason; the cause is deliberately not exposed."""

    status_code = 400
    default_detail = "Invalid or expired token"


class Unauthorized(GatekeeperError):
    status_code = 401
    default_detail = "Not authenticated"


class Forbidden(GatekeeperError):
    status_code = 403
    default_detail = "Access denied"


class OAuthError(GatekeeperError):
    status_code = 502
    default_detail = "Identity provider exchange failed"
