from datetime import datetime

from fastapi import status


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code or status.HTTP_500_INTERNAL_SERVER_ERROR
        self.details = details
        super().__init__(message)


class DatabaseException(AppException):
    """Exception raised for database-related errors."""

    def __init__(self, message: str = "A database error occurred."):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class StorageUnavailableException(AppException):
    """Exception raised when the shared store is unreachable or times out.

    The condition is transient; clients should retry with backoff.
    """

    def __init__(
        self,
        message: str = "Storage is temporarily unavailable. Please retry shortly.",
        retry_after: int = 5,
    ):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.retry_after = retry_after


class SigningMisconfiguredException(AppException):
    """Exception raised when tokens cannot be signed (missing or unusable key)."""

    def __init__(self, message: str = "Token signing is not configured."):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class AuthenticationException(AppException):
    """Exception raised for authentication-related errors."""

    def __init__(self, message: str = "Authentication failed."):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)


class CodeNotFoundException(AuthenticationException):
    """Exception raised when a one-time code does not exist."""

    def __init__(
        self, message: str = "Invalid code. Please sign in again from the desktop app."
    ):
        super().__init__(message)


class CodeExpiredException(AuthenticationException):
    """Exception raised when a one-time code is past its expiry."""

    def __init__(self, message: str = "Code expired. Please retry login."):
        super().__init__(message)


class CodeAlreadyConsumedException(AuthenticationException):
    """Exception raised when a one-time code has already been redeemed."""

    def __init__(
        self, message: str = "Code has already been used. Please retry login."
    ):
        super().__init__(message)


class RateLimitExceededException(AppException):
    """Exception raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: int | None = None,
        reset_at: datetime | None = None,
        limit: int | None = None,
    ):
        super().__init__(message, status.HTTP_429_TOO_MANY_REQUESTS)
        self.retry_after = retry_after
        self.reset_at = reset_at
        self.limit = limit


class NotFoundException(AppException):
    """Exception raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found."):
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class UserNotFoundException(NotFoundException):
    """Exception raised when a user is not found."""

    def __init__(self, message: str = "User not found."):
        super().__init__(message)


class SessionNotFoundException(NotFoundException):
    """Exception raised when a desktop session does not exist."""

    def __init__(self, message: str = "Session not found."):
        super().__init__(message)


class ForbiddenException(AppException):
    """Exception raised when access is forbidden."""

    def __init__(self, message: str = "Access forbidden."):
        super().__init__(message, status.HTTP_403_FORBIDDEN)


__all__ = [
    "AppException",
    "DatabaseException",
    "StorageUnavailableException",
    "SigningMisconfiguredException",
    "AuthenticationException",
    "CodeNotFoundException",
    "CodeExpiredException",
    "CodeAlreadyConsumedException",
    "RateLimitExceededException",
    "NotFoundException",
    "UserNotFoundException",
    "SessionNotFoundException",
    "ForbiddenException",
]
