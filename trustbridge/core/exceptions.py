"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500, details: Any = None):
        """Initialize exception with message, status code and optional details."""
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Missing or invalid session token."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class InvalidCredentialsException(UnauthorizedException):
    """Wrong email, password or 2FA code.

    The message stays generic so callers cannot tell whether an email exists.
    """

    def __init__(self, message: str = "Invalid email or password"):
        """Initialize with 401 status code."""
        super().__init__(message)


class AccountLockedException(AppException):
    """Account is temporarily locked after repeated failures."""

    def __init__(self, minutes_remaining: int):
        """Initialize with 423 status code and the remaining lock time."""
        self.minutes_remaining = minutes_remaining
        unit = "minute" if minutes_remaining == 1 else "minutes"
        super().__init__(
            f"Account is locked due to too many failed attempts. "
            f"Try again in {minutes_remaining} {unit}.",
            status_code=423,
            details={"minutesRemaining": minutes_remaining},
        )


class ForbiddenException(AppException):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden", details: Any = None):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403, details=details)


class InsufficientRoleException(ForbiddenException):
    """Caller's role is not allowed on the route."""

    def __init__(self, message: str = "Insufficient permissions"):
        """Initialize with 403 status code."""
        super().__init__(message)


class TwoFactorRequiredException(ForbiddenException):
    """Authenticated, but the session has not completed 2FA."""

    def __init__(self, message: str = "2FA verification required"):
        """Initialize with 403 status code and a hint for clients."""
        super().__init__(message, details={"requiresTwoFactor": True})


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class LastAdminException(BadRequestException):
    """Demotion would leave the system without an administrator."""

    def __init__(self, message: str = "Cannot demote the last remaining admin"):
        """Initialize with 400 status code."""
        super().__init__(message)


class AlreadyEnabledException(BadRequestException):
    """Two-factor authentication is already active for the account."""

    def __init__(self, message: str = "Two-factor authentication is already enabled"):
        """Initialize with 400 status code."""
        super().__init__(message)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error", details: Any = None):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400, details=details)


class RateLimitException(AppException):
    """Rate limit exceeded exception."""

    def __init__(self, message: str = "Rate limit exceeded"):
        """Initialize with 429 status code."""
        super().__init__(message, status_code=429)


class AuditWriteFailure(Exception):
    """An audit record could not be persisted.

    Raised and caught inside the audit logger only; never reaches a client.
    """
