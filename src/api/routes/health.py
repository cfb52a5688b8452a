"""Health check endpoint for the case API."""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter

from src.api.dependencies import StorageDep
from src.api.models.health import DatabaseHealth, HealthResponse
from src.infrastructure.settings import APP_VERSION

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


def check_database_health(storage) -> DatabaseHealth:
    """Check database connectivity with a trivial query."""
    db_type = storage.db_config.db_type
    start_time = time.time()

    result = storage.query("SELECT 1")
    if result.is_failure():
        logger.warning(f"Database query failed: {result.error}")
        return DatabaseHealth(status="disconnected", type=db_type, response_time_ms=None)

    response_time = (time.time() - start_time) * 1000
    return DatabaseHealth(
        status="connected",
        type=db_type,
        response_time_ms=round(response_time, 2)
    )


@router.get("/health", response_model=HealthResponse)
def health_check(storage: StorageDep) -> HealthResponse:
    """Health check endpoint.

    Used by monitoring tools and load balancers; exposes no sensitive data.
    """
    db_health = check_database_health(storage)
    return HealthResponse(
        status="healthy" if db_health.status == "connected" else "unhealthy",
        timestamp=datetime.now(timezone.utc),
        version=APP_VERSION,
        database=db_health
    )
