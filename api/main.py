"""
FastAPI API Service Entry Point
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.middleware.rate_limiting import RateLimitMiddleware
from api.routes import admin, turns
from queue_engine.errors import TurnQueueError
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.startup_validator import StartupValidationError, validate_startup_config

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)

# User-facing messages by error code
ERROR_MESSAGES_AR = {
    "VALIDATION_ERROR": "البيانات المدخلة غير صحيحة",
    "DUPLICATE_ACTIVE_TURN": "لديك دور نشط بالفعل",
    "INVALID_TRANSITION": "لا يمكن تنفيذ هذه العملية على هذا الدور",
    "TURN_NOT_FOUND": "لم يتم العثور على الدور",
    "PERMISSION_DENIED": "غير مصرح لك بتنفيذ هذه العملية",
    "STORAGE_UNAVAILABLE": "الخدمة غير متاحة حالياً، يرجى المحاولة لاحقاً",
    "CONCURRENCY_CONFLICT": "الخدمة مشغولة حالياً، يرجى المحاولة مرة أخرى",
}
DEFAULT_ERROR_MESSAGE_AR = "حدث خطأ غير متوقع"

app = FastAPI(
    title="Barbershop Turn Queue API",
    version="1.0.0",
)

# Load settings for CORS configuration
settings = get_settings()
origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]

# Add rate limiting middleware FIRST (executes LAST, closest to routes)
app.add_middleware(RateLimitMiddleware)

# Add CORS middleware LAST (executes FIRST, handles preflight OPTIONS before rate limiting)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(turns.router)
app.include_router(admin.router)


# =========================================================================
# STARTUP VALIDATION
# =========================================================================
@app.on_event("startup")
async def startup_config_validation():
    """
    Validate critical configuration at startup.

    Raises:
        StartupValidationError: If critical configuration is invalid
    """
    logger.info("Running API startup configuration validation...")
    try:
        await validate_startup_config()
        logger.info("API startup configuration validation passed")
    except StartupValidationError as e:
        logger.critical(f"API startup blocked due to configuration errors: {e}")
        raise  # FastAPI will fail to start


@app.on_event("shutdown")
async def shutdown_clients():
    from database.connection import engine
    from shared.redis_client import close_redis_client

    await close_redis_client()
    await engine.dispose()


# =========================================================================
# EXCEPTION HANDLERS
# =========================================================================
def error_response(error_code: str, status_code: int, details: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error_code": error_code,
            "error_message": ERROR_MESSAGES_AR.get(error_code, DEFAULT_ERROR_MESSAGE_AR),
            "details": details or {},
        },
    )


@app.exception_handler(TurnQueueError)
async def turn_queue_exception_handler(request: Request, exc: TurnQueueError) -> JSONResponse:
    """Map engine errors to the JSON error envelope."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{exc.error_code}: {exc.message}",
        extra={"request_path": request.url.path},
    )
    return error_response(exc.error_code, exc.status_code, exc.details)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with validation error details."""
    errors = [
        {"field": ".".join(str(part) for part in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return error_response("VALIDATION_ERROR", 400, {"errors": errors})


@app.get("/health")
async def health_check() -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Checks:
    - Redis connectivity (PING command)
    - PostgreSQL connectivity (SELECT 1 query)

    Returns:
        200 OK if all systems healthy
        503 Service Unavailable if degraded
    """
    from sqlalchemy import text

    from database.connection import get_async_session
    from shared.redis_client import get_redis_client

    health_status = {
        "status": "healthy",
        "redis": "unknown",
        "postgres": "unknown",
    }
    status_code = 200

    try:
        redis_client = get_redis_client()
        await redis_client.ping()
        health_status["redis"] = "connected"
    except Exception as e:
        logger.error(f"Health check: Redis unreachable: {e}")
        health_status["redis"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    try:
        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))
            health_status["postgres"] = "connected"
    except Exception as e:
        logger.error(f"Health check: PostgreSQL unreachable: {e}")
        health_status["postgres"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    return JSONResponse(status_code=status_code, content=health_status)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Barbershop Turn Queue API - Use /health for health checks"}
