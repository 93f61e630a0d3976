"""
FinancePro Classification API - FastAPI application entry point
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import func, select
from starlette.responses import Response

from apps.api.routers import documents, mappings
from packages.common.config import get_settings
from packages.common.database import sessionmanager
from packages.common.errors import (
    ConflictError,
    EngineError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from packages.common.log_config import configure_logging
from packages.common.models import PgcAccount

configure_logging()

logger = structlog.get_logger()
settings = get_settings()

# Most specific first: ItemAlreadyConfirmedError is an InvalidStateError
ERROR_STATUS = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_400_BAD_REQUEST),
)


def status_for(exc: EngineError) -> int:
    for error_class, status_code in ERROR_STATUS:
        if isinstance(exc, error_class):
            return status_code
    if exc.retryable:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager"""
    logger.info("starting_financepro_api",
                environment=settings.environment,
                version="0.1.0")

    # Initialize database connection pool
    await sessionmanager.init(settings.database_url)

    yield

    # Cleanup
    logger.info("shutting_down_financepro_api")
    await sessionmanager.close()


# Create FastAPI application
app = FastAPI(
    title="FinancePro Classification API",
    description="Document classification and Angola PGC chart-of-accounts mapping",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment != "production" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(EngineError)
async def engine_exception_handler(request: Request, exc: EngineError):
    """Map the engine's error taxonomy to HTTP status codes"""
    status_code = status_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log("engine_error",
        path=request.url.path,
        error=exc.code,
        message=exc.message,
        status_code=status_code)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with structured logging"""
    logger.warning("validation_error",
                   path=request.url.path,
                   errors=exc.errors())
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Anything outside the engine taxonomy is a bug: log it, answer 500"""
    logger.error("unhandled_exception",
                 path=request.url.path,
                 error=str(exc),
                 exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "Internal server error",
            "request_id": request.headers.get("x-request-id"),
        },
    )


app.include_router(documents.router, prefix="/api/documents", tags=["Documents"])
app.include_router(mappings.router, prefix="/api/mappings", tags=["Mappings"])


@app.get("/health", tags=["System"])
async def health_check():
    """
    Readiness probe.

    Healthy only when the database answers and the PGC catalog is seeded;
    without accounts every document would end in classification_failed.
    """
    try:
        async with sessionmanager.session() as session:
            accounts = await session.scalar(select(func.count()).select_from(PgcAccount))
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unreachable", "error": str(e)},
        )

    if not accounts:
        logger.warning("health_check_catalog_empty")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "connected", "pgc_accounts": 0},
        )

    return {
        "status": "healthy",
        "environment": settings.environment,
        "version": "0.1.0",
        "database": "connected",
        "pgc_accounts": accounts,
    }


@app.get("/metrics", tags=["System"])
async def metrics():
    """Prometheus scrape endpoint (METRICS_ENABLED=false hides it)"""
    if not settings.metrics_enabled:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "not_found"})
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "apps.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
