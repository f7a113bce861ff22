"""
Mobility Hub - Main FastAPI Application
"""
from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from starlette.responses import JSONResponse

from mobility_hub.api.routes import router as api_router
from mobility_hub.core.circuit_breaker import CircuitBreaker
from mobility_hub.core.config import settings
from mobility_hub.core.logging import get_logger, setup_logging
from mobility_hub.core.middleware import setup_exception_handlers, setup_middleware
from mobility_hub.db import models  # noqa: F401  registers tables on Base.metadata
from mobility_hub.db.database import Base, engine, get_session_factory

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {"name": "Webhooks", "description": "WhatsApp Cloud API verification and deliveries."},
    {
        "name": "Admin Bridge",
        "description": "Backoffice milestones: quotations, payments, certificates, vehicle and driver approval.",
    },
    {"name": "Health", "description": "Liveness and readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "WhatsApp mobility assistant: MoMo QR codes, nearby drivers, scheduled "
        "trips, vehicle registration and motor insurance."
    ),
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging, security headers, rate limit)
setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description="Cheap check that the process is up. Does not touch dependencies.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness probe",
    description=(
        "Checks the database and reports circuit breaker states. "
        "Returns 503 with status=degraded when the DB is unreachable or a breaker is open."
    ),
    responses={
        200: {
            "description": "All dependencies available",
            "content": {
                "application/json": {
                    "example": {"status": "healthy", "db": "ok", "circuit_breakers": {"whatsapp": "closed"}}
                }
            },
        },
        503: {"description": "At least one dependency is unavailable"},
    },
    tags=["Health"],
)
async def readiness_check(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> JSONResponse:
    result: dict = {"status": "healthy"}

    try:
        async with session_factory() as db:
            await db.execute(text("SELECT 1"))
        result["db"] = "ok"
    except SQLAlchemyError as e:
        logger.error("Readiness: database check failed", extra_data={"error": str(e)})
        result["db"] = "error"
        result["status"] = "degraded"

    breakers = CircuitBreaker.snapshot()
    result["circuit_breakers"] = breakers
    if any(state == "open" for state in breakers.values()):
        result["status"] = "degraded"

    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
