from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from mailpush.domain.exceptions import (AuthenticationException,
                                        MailPushException,
                                        RegistrationNotFoundError)
from mailpush.infrastructure.config.settings import get_settings
from mailpush.infrastructure.persistence.database import (create_tables,
                                                          dispose_engine,
                                                          get_db)
from mailpush.presentation.api.v1.routes import lifecycle, provider_hooks
from mailpush.presentation.middleware.correlation import \
    CorrelationIDMiddleware
from mailpush.presentation.middleware.security import \
    RequestSizeLimitMiddleware
from mailpush.shared.telemetry.logging import get_logger, setup_logging

logger = get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for application initialization and cleanup"""
    setup_logging()

    # Production schema is managed by migrations; auto-create is for local runs
    if settings.database_auto_create:
        await create_tables()
        logger.info("Database tables created")

    yield

    await dispose_engine()
    logger.info("Database engine disposed")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)

# Configure rate limiter
app.state.limiter = lifecycle.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """The client contract uses 400 (not FastAPI's 422) for missing or malformed fields"""
    return JSONResponse(
        status_code=400,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Missing or invalid fields",
            "details": jsonable_encoder(exc.errors()),
        },
    )


def _status_for(exc: MailPushException) -> int:
    if isinstance(exc, AuthenticationException):
        return 401
    if isinstance(exc, RegistrationNotFoundError):
        return 404
    # Provider, exchange and transient failures at registration time
    return 500


@app.exception_handler(MailPushException)
async def mailpush_exception_handler(request: Request, exc: MailPushException):
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Middleware (applied in reverse order of registration)
# 1. Request size limit (first check)
app.add_middleware(RequestSizeLimitMiddleware, max_request_size=settings.max_request_size)

# 2. Correlation ID for request tracing
app.add_middleware(CorrelationIDMiddleware)

# Routers
app.include_router(lifecycle.router, tags=["lifecycle"])
app.include_router(provider_hooks.router, tags=["provider-hooks"])


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint for load balancers and monitoring.

    Returns:
    - 200 OK if the API and database are reachable
    - 503 Service Unavailable otherwise
    """
    checks: dict[str, Any] = {
        "api": True,
        "database": False,
    }

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("Health check database query failed: %s", e)
        checks["error"] = str(e)
        return JSONResponse(status_code=503, content={"status": "unhealthy", "checks": checks})

    return {"status": "healthy", "checks": checks}
