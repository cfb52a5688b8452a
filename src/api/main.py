"""Main FastAPI application for the case reference service.

This module sets up the FastAPI application with all routes, middleware,
and configuration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.dependencies import get_settings, get_storage_adapter
from src.api.logging_config import setup_logging
from src.api.middleware import setup_middleware
from src.api.routes import cases, health
from src.domain.validator import format_errors
from src.infrastructure.settings import APP_VERSION

settings = get_settings()
setup_logging(use_json=settings.json_logs, log_level=settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info(f"{settings.app_name} starting up...")
    logger.info("API documentation available at /api/docs")
    logger.info(f"Logging level: {settings.log_level}")
    yield
    logger.info(f"{settings.app_name} shutting down...")
    if get_storage_adapter.cache_info().currsize:
        get_storage_adapter().close()


app = FastAPI(
    title=settings.app_name,
    description="Encounter (case) records with batched master-data reference resolution",
    version=APP_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Process-Time", "X-Request-ID"],
)

setup_middleware(app)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed requests (e.g. unparseable JSON) in the case error shape."""
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": format_errors(exc)}
    )


app.include_router(health.router)
app.include_router(cases.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": settings.app_name,
        "version": APP_VERSION,
        "docs": "/api/docs",
        "health": "/api/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
