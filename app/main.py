from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request, status
from sqlalchemy import text
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings, app_logger
from app.core.db import dispose_db
from app.core.dependencies import get_async_session
from app.core.exceptions.handlers import (
    authentication_exception_handler,
    database_exception_handler,
    exception_schema,
    forbidden_exception_handler,
    general_exception_handler,
    not_found_exception_handler,
    rate_limit_exception_handler,
    signing_misconfigured_exception_handler,
    storage_unavailable_exception_handler,
)
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
from app.core.routers import auth_router, rate_limits_router, sessions_router
from app.core.services import RedisService
from app.infrastructure.scheduler import scheduler, initialize_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_logger.info("Starting application...")

    # Initialize Redis service (only when it backs the rate limiter)
    if settings.RATE_LIMIT_BACKEND == "redis":
        app_logger.info("Initializing Redis service...")
        await RedisService.init(settings.REDIS_URL)
        app_logger.info("Redis service initialized successfully.")
    else:
        app_logger.info(
            f"Using '{settings.RATE_LIMIT_BACKEND}' rate limit backend; Redis not required."
        )

    # Start the scheduler (only if enabled)
    if settings.ENABLE_SCHEDULER:
        app_logger.info("Starting scheduler...")
        scheduler.start()
        app_logger.info("Scheduler started successfully.")
        initialize_scheduler()  # Schedule jobs after starting the scheduler
    else:
        app_logger.info("Scheduler disabled via ENABLE_SCHEDULER setting.")

    # Yield control back to the application
    yield

    # Cleanup on shutdown
    app_logger.info("Shutting down application...")

    # Stop the scheduler
    if settings.ENABLE_SCHEDULER and scheduler.running:
        app_logger.info("Stopping scheduler...")
        scheduler.shutdown()
        app_logger.info("Scheduler stopped successfully.")

    # Close Redis service
    if RedisService.is_connected():
        app_logger.info("Closing Redis service...")
        await RedisService.aclose()
        app_logger.info("Redis service closed successfully.")

    # Release pooled database connections
    app_logger.info("Disposing database engine...")
    await dispose_db()
    app_logger.info("Database engine disposed successfully.")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=settings.APP_DESCRIPTION,
    debug=settings.DEBUG,
    openapi_url="/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    responses=exception_schema,
    root_path_in_servers=False,
    servers=[
        {
            "url": f"{settings.API_DOMAIN}",
        },
    ],
)

# Register exception handlers (order matters - more specific first)
app.add_exception_handler(RateLimitExceededException, rate_limit_exception_handler)
app.add_exception_handler(AuthenticationException, authentication_exception_handler)
app.add_exception_handler(ForbiddenException, forbidden_exception_handler)
app.add_exception_handler(NotFoundException, not_found_exception_handler)
app.add_exception_handler(
    StorageUnavailableException, storage_unavailable_exception_handler
)
app.add_exception_handler(
    SigningMisconfiguredException, signing_misconfigured_exception_handler
)
app.add_exception_handler(DatabaseException, database_exception_handler)
# Generic fallback
app.add_exception_handler(AppException, general_exception_handler)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware for the browser session set by the web login
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.SESSION_SECRET_KEY,
    session_cookie=settings.SESSION_COOKIE_NAME,
    https_only=not settings.DEBUG,
    same_site=settings.SESSION_SAME_SITE_COOKIE_POLICY,
)

# Include routers
app.include_router(auth_router, prefix="/auth", tags=["Authentication"])
app.include_router(sessions_router, prefix="/sessions", tags=["Desktop Sessions"])
app.include_router(rate_limits_router, prefix="/rate-limits", tags=["Rate Limits"])


@app.get("/", include_in_schema=False)
async def root(request: Request):
    base_url = str(request.base_url).rstrip("/")
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "documentations": {
            "swagger": f"{base_url}/docs",
            "redoc": f"{base_url}/redoc",
        },
        "version": settings.APP_VERSION,
    }


@app.head("/health", include_in_schema=False)
@app.get("/health")
async def health_check(session: Annotated[AsyncSession, Depends(get_async_session)]):
    """
    Health check endpoint to verify if the API is running.

    Checks:
        - Database connectivity
        - Redis connectivity (only when Redis backs the rate limiter)
    """
    health_status: dict = {
        "status": "ok",
        "message": f"{settings.APP_NAME} is running.",
        "checks": {
            "database": "ok",
        },
    }

    # Check database connectivity
    try:
        async with session.begin():
            result = await session.execute(text("SELECT 1"))
            if result.scalar() != 1:
                health_status["checks"]["database"] = "unhealthy"
                health_status["status"] = "degraded"
    except Exception as e:
        app_logger.error(f"Database health check failed: {e}")
        health_status["checks"]["database"] = "unhealthy"
        health_status["status"] = "degraded"

    # Check Redis connectivity
    if settings.RATE_LIMIT_BACKEND == "redis":
        health_status["checks"]["redis"] = "ok"
        try:
            redis_ok = await RedisService.ping()
            if not redis_ok:
                health_status["checks"]["redis"] = "unhealthy"
                health_status["status"] = "degraded"
        except Exception as e:
            app_logger.error(f"Redis health check failed: {e}")
            health_status["checks"]["redis"] = "unhealthy"
            health_status["status"] = "degraded"

    # Return 503 if any check failed
    if health_status["status"] != "ok":
        raise AppException(
            "One or more health checks failed.",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=health_status,
        )

    return health_status
