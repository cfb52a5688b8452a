"""Case endpoint models.

Case records themselves stay plain dicts: the stored shape carries an open
extension bag and resolved ``*_name`` fields, so only the envelopes are typed.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Pagination(BaseModel):
    """Pagination metadata for case listings."""
    model_config = ConfigDict(populate_by_name=True)

    page: int
    limit: int
    total: int
    total_pages: int = Field(alias="totalPages")
    has_next_page: bool = Field(alias="hasNextPage")
    has_prev_page: bool = Field(alias="hasPrevPage")


class CaseListResponse(BaseModel):
    success: bool = True
    data: list[dict[str, Any]]
    pagination: Pagination


class CaseResponse(BaseModel):
    success: bool = True
    data: dict[str, Any]
    message: Optional[str] = None


class MetricsFilters(BaseModel):
    patient_id: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None


class CaseMetricsResponse(BaseModel):
    """Aggregate case counts."""
    total_cases: int
    active_cases: int
    completed_cases: int
    pending_cases: int
    cancelled_cases: int
    visit_types: dict[str, int]
    filters: MetricsFilters


class ErrorResponse(BaseModel):
    error: str


class ValidationErrorResponse(BaseModel):
    error: str
    details: list[str]
