from __future__ import annotations


class VaultError(Exception):
    """Base error for keywarden; carries the HTTP mapping used at the request boundary."""

    status_code = 500
    error_code: str | None = None
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, error_code: str | None = None) -> None:
        self.message = message or self.default_message
        if error_code is not None:
            self.error_code = error_code
        super().__init__(self.message)


class Unauthorized(VaultError):
    """Missing, malformed, expired or stale access token."""

    status_code = 401
    default_message = "Unauthorized"


class InvalidGrant(VaultError):
    """Wrong password, unknown user, or invalid refresh token."""

    status_code = 400
    error_code = "invalid_grant"
    default_message = "Username or password is incorrect. Try again."


class Locked(VaultError):
    """Login lockout in effect."""

    status_code = 429
    error_code = "Too many requests"
    default_message = "Too many requests"

    def __init__(self, message: str | None = None, *, retry_after_seconds: int) -> None:
        super().__init__(message)
        self.retry_after_seconds = max(int(retry_after_seconds), 0)


class RateLimited(Locked):
    """API request volume exceeded for the current window."""


class BadRequest(VaultError):
    """Malformed request body or missing required field."""

    status_code = 400
    default_message = "Bad request"


class Forbidden(VaultError):
    """Operation not permitted for this deployment."""

    status_code = 403
    default_message = "Forbidden"


class NotFound(VaultError):
    """Referenced entity absent or not owned by the caller."""

    status_code = 404
    default_message = "Not found"


class Internal(VaultError):
    """Unexpected storage or processing failure."""


class ConfigurationError(Exception):
    """Missing or invalid startup configuration."""
