from fastapi import Request, status
from fastapi.responses import JSONResponse

from app.core.config import request_logger
from app.core.exceptions.types import (
    AppException,
    AuthenticationException,
    DatabaseException,
    ForbiddenException,
    NotFoundException,
    RateLimitExceededException,
    SigningMisconfiguredException,
    StorageUnavailableException,
)


async def general_exception_handler(request: Request, exc: AppException):
    """
    Handles general exceptions by returning a JSON response with the error message.

    Args:
        request: The request object.
        exc (AppException): The exception instance.

    Returns:
        JSONResponse: A response containing the error message and the exception's status code.
    """
    request_logger.error(f"GeneralException: {exc}")
    content: dict = {"detail": str(exc)}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


async def database_exception_handler(request: Request, exc: DatabaseException):
    """
    Handles database exceptions without leaking statement details to the client.

    Args:
        request: The request object.
        exc (DatabaseException): The database exception instance.

    Returns:
        JSONResponse: A response with status code 500.
    """
    request_logger.error(f"DatabaseException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": "A database error occurred."},
    )


async def storage_unavailable_exception_handler(
    request: Request, exc: StorageUnavailableException
):
    """
    Handles transient storage failures; clients are told when to retry.

    Returns:
        JSONResponse: A response with status code 503 and a Retry-After header.
    """
    request_logger.error(f"StorageUnavailableException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc)},
        headers={"Retry-After": str(exc.retry_after)},
    )


async def signing_misconfigured_exception_handler(
    request: Request, exc: SigningMisconfiguredException
):
    """
    Handles token signing failures. These are fatal configuration errors, so no
    retry advice is given.

    Returns:
        JSONResponse: A response with status code 500.
    """
    request_logger.critical(f"SigningMisconfiguredException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": "Unable to issue credentials."},
    )


async def authentication_exception_handler(
    request: Request, exc: AuthenticationException
):
    """
    Handles authentication exceptions by returning a JSON response.

    Args:
        request: The request object.
        exc (AuthenticationException): The authentication exception instance.

    Returns:
        JSONResponse: A response containing the error message and status code 401.
    """
    request_logger.warning(f"{type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc)},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def forbidden_exception_handler(request: Request, exc: ForbiddenException):
    request_logger.warning(f"ForbiddenException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc)},
    )


async def not_found_exception_handler(request: Request, exc: NotFoundException):
    request_logger.info(f"{type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc)},
    )


async def rate_limit_exception_handler(
    request: Request, exc: RateLimitExceededException
):
    """
    Handles rate limit exceeded exceptions by returning a JSON response.

    The body carries the exact reset time so clients can back off precisely.

    Args:
        request: The request object.
        exc (RateLimitExceededException): The rate limit exception instance.

    Returns:
        JSONResponse: A response with status code 429, `{error, resetAt}` body
            and Retry-After / X-RateLimit-* headers.
    """
    request_logger.warning(f"RateLimitExceededException: {exc}")
    headers = {}
    if exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    if exc.limit is not None:
        headers["X-RateLimit-Limit"] = str(exc.limit)
        headers["X-RateLimit-Remaining"] = "0"
    if exc.reset_at is not None:
        headers["X-RateLimit-Reset"] = str(int(exc.reset_at.timestamp()))
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": str(exc),
            "resetAt": exc.reset_at.isoformat() if exc.reset_at else None,
        },
        headers=headers,
    )


exception_schema = {
    status.HTTP_500_INTERNAL_SERVER_ERROR: {
        "description": "Internal Server Error",
        "content": {
            "application/json": {
                "example": {"detail": "Some internal server error message"},
            }
        },
    },
    status.HTTP_401_UNAUTHORIZED: {
        "description": "Authentication Error",
        "content": {
            "application/json": {
                "example": {"detail": "Authentication failed."},
            }
        },
    },
    status.HTTP_429_TOO_MANY_REQUESTS: {
        "description": "Rate Limit Exceeded",
        "content": {
            "application/json": {
                "example": {
                    "error": "Rate limit exceeded",
                    "resetAt": "2024-01-01T13:00:00+00:00",
                },
            }
        },
    },
    status.HTTP_503_SERVICE_UNAVAILABLE: {
        "description": "Storage Unavailable",
        "content": {
            "application/json": {
                "example": {
                    "detail": "Storage is temporarily unavailable. Please retry shortly."
                },
            }
        },
    },
}


__all__ = [
    "general_exception_handler",
    "database_exception_handler",
    "storage_unavailable_exception_handler",
    "signing_misconfigured_exception_handler",
    "authentication_exception_handler",
    "forbidden_exception_handler",
    "not_found_exception_handler",
    "rate_limit_exception_handler",
    "exception_schema",
]
