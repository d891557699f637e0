"""
FastAPI API Service Entry Point
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.dependencies import get_db
from api.middleware.rate_limiting import RateLimitMiddleware
from api.routes import appointments, notifications, reservation, staff_schedules
from booking.errors import BookingError
from booking.services.gcal_push_service import build_calendar_sync
from booking.services.push_service import build_notifier
from database.connection import Database
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.redis_client import close_redis_client, get_redis_client
from shared.startup_validator import StartupValidationError, validate_startup_config

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Own the process-wide handles: database, calendar adapter, push notifier.

    Startup validation is fail-fast: a missing JWT secret or an unreachable
    database blocks startup rather than failing on the first booking.
    """
    db = Database.from_settings()
    logger.info("Running API startup configuration validation...")
    try:
        await validate_startup_config(db)
        logger.info("API startup configuration validation passed")
    except StartupValidationError as e:
        logger.critical(f"API startup blocked due to configuration errors: {e}")
        await db.dispose()
        raise

    app.state.db = db
    app.state.calendar = build_calendar_sync()
    app.state.notifier = build_notifier()

    yield

    await db.dispose()
    await close_redis_client()
    logger.info("API shutdown complete")


app = FastAPI(
    title="Barbería Booking API",
    version="1.0.0",
    lifespan=lifespan,
)

# Load settings for CORS configuration
settings = get_settings()
origins = settings.CORS_ORIGINS.split(",")

# Add rate limiting middleware FIRST (executes LAST, closest to routes)
app.add_middleware(RateLimitMiddleware)

# Add CORS middleware LAST (executes FIRST, handles preflight OPTIONS before rate limiting)
# In FastAPI/Starlette, last added middleware executes first
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(reservation.router)
app.include_router(appointments.router)
app.include_router(notifications.router)
app.include_router(staff_schedules.router)


# =========================================================================
# Exception handlers
# =========================================================================
@app.exception_handler(BookingError)
async def booking_exception_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Typed core errors keep their status code and error code."""
    log = logger.warning if exc.status_code >= 409 else logger.info
    log(
        f"{exc.error_code}: {exc.message}",
        extra={"request_path": request.url.path},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return 400 (not 422) with validation error details."""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Datos de entrada inválidos",
            "code": "VALIDATION_ERROR",
            "details": {"errors": errors},
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail, "code": f"HTTP_{exc.status_code}"},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled error: {exc}",
        extra={"request_path": request.url.path},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Error interno del servidor", "code": "INTERNAL_ERROR"},
    )


@app.get("/health")
async def health_check(db: Annotated[Database, Depends(get_db)]) -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Checks:
    - Redis connectivity (PING command)
    - PostgreSQL connectivity (SELECT 1 query)

    Returns:
        200 OK if all systems healthy
        503 Service Unavailable if degraded
    """
    health_status = {
        "status": "healthy",
        "redis": "unknown",
        "postgres": "unknown",
    }
    status_code = 200

    # Check Redis connectivity
    try:
        redis_client = get_redis_client()
        await redis_client.ping()
        health_status["redis"] = "connected"
    except Exception:
        health_status["redis"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    # Check PostgreSQL connectivity
    try:
        await db.ping()
        health_status["postgres"] = "connected"
    except Exception:
        health_status["postgres"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    return JSONResponse(status_code=status_code, content=health_status)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": f"{settings.BUSINESS_NAME} booking API - Use /health for health checks"}
