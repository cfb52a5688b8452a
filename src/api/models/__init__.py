"""Response models for the case API."""

from src.api.models.cases import (
    CaseListResponse,
    CaseMetricsResponse,
    CaseResponse,
    ErrorResponse,
    Pagination,
    ValidationErrorResponse,
)
from src.api.models.health import DatabaseHealth, HealthResponse

__all__ = [
    "CaseListResponse",
    "CaseMetricsResponse",
    "CaseResponse",
    "ErrorResponse",
    "Pagination",
    "ValidationErrorResponse",
    "DatabaseHealth",
    "HealthResponse",
]
