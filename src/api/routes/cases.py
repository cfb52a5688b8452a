"""Case endpoints.

List, fetch, create and aggregate encounter (case) records. Every handler
delegates to CaseService and maps its Result onto an HTTP response.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse

from src.api.dependencies import CaseServiceDep, SettingsDep
from src.api.models.cases import (
    CaseListResponse,
    CaseMetricsResponse,
    CaseResponse,
    ErrorResponse,
    ValidationErrorResponse,
)
from src.domain.ports import Result
from src.domain.services.case_service import build_case_query

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["cases"])

# error_type -> (status code, client-facing message); None keeps result.error
ERROR_RESPONSES: dict[str, tuple[int, Optional[str]]] = {
    "ValidationError": (400, None),
    "PatientNotFoundError": (404, "Patient not found"),
    "CaseNotFoundError": (404, "Case not found"),
    "DuplicateCaseNumberError": (409, "Case number already exists"),
    "GatewayError": (500, "Failed to resolve master data references"),
    "StorageError": (500, "Internal server error"),
}

_ERROR_RESPONSES_DOC = {
    400: {"model": ValidationErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def error_response(result: Result[Any]) -> JSONResponse:
    """Translate a failed service Result into a JSON error response."""
    status_code, message = ERROR_RESPONSES.get(result.error_type, (500, "Internal server error"))
    content: dict[str, Any] = {"error": message or result.error}
    if result.error_type == "ValidationError":
        content["details"] = (result.error_details or {}).get("details", [])
    if status_code >= 500:
        logger.error(f"Case request failed ({result.error_type}): {result.error}")
    return JSONResponse(status_code=status_code, content=content)


@router.get("/cases", response_model=CaseListResponse, responses=_ERROR_RESPONSES_DOC)
def list_cases(
    service: CaseServiceDep,
    settings: SettingsDep,
    page: Optional[str] = Query(None, description="Page number (>= 1)"),
    limit: Optional[str] = Query(None, description="Page size (1-100)"),
    search: Optional[str] = Query(None, description="Case number substring"),
    sort_by: Optional[str] = Query(None, alias="sortBy", description="Sort column"),
    sort_order: Optional[str] = Query(None, alias="sortOrder", description="asc or desc"),
    status: Optional[list[str]] = Query(None, description="Status filter (repeated or comma-delimited)"),
    patient_id: Optional[str] = Query(None, description="Filter by patient"),
):
    """List cases with pagination, search and filtering.

    Paging and sorting parameters never cause an error: bad values fall back
    to defaults or clamp to bounds. Cancelled cases are hidden unless the
    status filter asks for them.
    """
    query = build_case_query(
        page=page,
        limit=limit,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        status=status,
        patient_id=patient_id,
        default_limit=settings.default_page_size,
        max_limit=settings.max_page_size,
    )
    result = service.list_cases(query)
    if result.is_failure():
        return error_response(result)
    return CaseListResponse(success=True, **result.value)


@router.post(
    "/cases",
    status_code=201,
    response_model=CaseResponse,
    responses={**_ERROR_RESPONSES_DOC, 409: {"model": ErrorResponse}},
)
def create_case(service: CaseServiceDep, payload: Any = Body(None)):
    """Create a case and return it with resolved reference names."""
    result = service.create_case(payload)
    if result.is_failure():
        return error_response(result)
    return CaseResponse(success=True, data=result.value, message="Case created successfully")


@router.get("/cases/metrics", response_model=CaseMetricsResponse, responses=_ERROR_RESPONSES_DOC)
def get_case_metrics(
    service: CaseServiceDep,
    patient_id: Optional[str] = Query(None, description="Filter by patient"),
    date_from: Optional[str] = Query(None, description="Earliest encounter date (YYYY-MM-DD)"),
    date_to: Optional[str] = Query(None, description="Latest encounter date (YYYY-MM-DD)"),
):
    """Aggregate case counts by status and visit type."""
    result = service.case_metrics(patient_id=patient_id, date_from=date_from, date_to=date_to)
    if result.is_failure():
        return error_response(result)
    return result.value


@router.get("/cases/{case_id}", response_model=CaseResponse, responses=_ERROR_RESPONSES_DOC)
def get_case(case_id: str, service: CaseServiceDep):
    """Fetch one case by id."""
    result = service.get_case(case_id)
    if result.is_failure():
        return error_response(result)
    return CaseResponse(success=True, data=result.value)
