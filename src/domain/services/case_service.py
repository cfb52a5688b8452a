"""Case Service.

Orchestrates the per-request pipelines in front of the case store:

    write path:  Sanitize -> Validate -> Patient check -> Persist -> Resolve
    read path:   Fetch page -> Resolve the whole page in one batch

Resolution on the write path runs inside the insert transaction, so a
master-data failure rolls the insert back and nothing is left behind.
"""

import logging
import math
from collections import Counter
from datetime import date
from typing import Any, Iterable, Optional

from src.domain import sanitizer, validator
from src.domain.enums import CaseStatus
from src.domain.ports import (
    CaseError,
    CaseNotFoundError,
    CaseQuery,
    CaseRepositoryPort,
    PatientDirectoryPort,
    PatientNotFoundError,
    Result,
    ValidationError,
)
from src.domain.services.reference_resolver import ReferenceResolutionEngine
from src.domain.utils import (
    filter_allowed,
    is_uuid,
    normalize_uuid,
    parse_array_param,
    parse_int_param,
)

logger = logging.getLogger(__name__)

# Columns a caller may sort by; anything else falls back to created_at.
SORTABLE_COLUMNS = frozenset({
    "created_at",
    "updated_at",
    "encounter_date",
    "case_no",
    "status",
    "visit_type",
})

DEFAULT_SORT_COLUMN = "created_at"
DEFAULT_SORT_ORDER = "desc"


def build_case_query(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
    status: Optional[Iterable[str]] = None,
    patient_id: Optional[str] = None,
    default_limit: int = 50,
    max_limit: int = 100,
) -> CaseQuery:
    """Build a CaseQuery from raw query-string values without ever rejecting.

    Out-of-range or non-numeric paging values fall back to defaults or clamp
    to bounds; unknown sort columns and orders fall back silently; unknown
    status values are ignored.
    """
    order = (sort_order or "").strip().lower()
    return CaseQuery(
        page=parse_int_param(page, default=1),
        limit=parse_int_param(limit, default=default_limit, maximum=max_limit),
        search=(search or "").strip(),
        sort_by=sort_by if sort_by in SORTABLE_COLUMNS else DEFAULT_SORT_COLUMN,
        sort_order=order if order in ("asc", "desc") else DEFAULT_SORT_ORDER,
        statuses=tuple(filter_allowed(parse_array_param(status), CaseStatus.values())),
        patient_id=normalize_uuid((patient_id or "").strip()) or None,
    )


def _is_iso_date(value: str) -> bool:
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def pagination_meta(page: int, limit: int, total: int) -> dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }


class CaseService:
    """Application service for listing, fetching and creating cases.

    Parameters:
        repository: Case store
        patients: Patient existence check
        engine: Reference resolution engine

    Every method returns a Result; ``error_type`` is one of
    ValidationError, PatientNotFoundError, CaseNotFoundError,
    DuplicateCaseNumberError, GatewayError or StorageError.
    """

    def __init__(
        self,
        repository: CaseRepositoryPort,
        patients: PatientDirectoryPort,
        engine: ReferenceResolutionEngine,
    ):
        self.repository = repository
        self.patients = patients
        self.engine = engine

    def list_cases(self, query: CaseQuery) -> Result[dict[str, Any]]:
        """Return one resolved page of cases plus pagination metadata."""
        page_result = self.repository.list_cases(query)
        if page_result.is_failure():
            logger.error(f"Failed to list cases: {page_result.error}")
            return page_result

        page = page_result.value
        try:
            records = self.engine.resolve_cases(page.records)
        except CaseError as e:
            return Result.failure_result(e)

        return Result.success_result({
            "data": records,
            "pagination": pagination_meta(query.page, query.limit, page.total),
        })

    def get_case(self, case_id: str) -> Result[dict[str, Any]]:
        """Return one resolved case by primary id."""
        if not is_uuid(case_id):
            return Result.failure_result(CaseNotFoundError("Case not found", case_id=case_id))

        case_id = normalize_uuid(case_id)
        result = self.repository.get_case(case_id)
        if result.is_failure():
            return result
        if result.value is None:
            return Result.failure_result(CaseNotFoundError("Case not found", case_id=case_id))

        try:
            return Result.success_result(self.engine.resolve_case(result.value))
        except CaseError as e:
            return Result.failure_result(e)

    def create_case(self, payload: Any) -> Result[dict[str, Any]]:
        """Sanitize, validate, persist and resolve a new case.

        Returns:
            Result[dict]: The resolved persisted case on success.
        """
        validation = validator.validate(sanitizer.clean(payload))
        if validation.is_failure():
            return validation

        record = validation.value
        exists = self.patients.patient_exists(record.patient_id)
        if exists.is_failure():
            logger.error(f"Patient lookup failed: {exists.error}")
            return exists
        if not exists.value:
            return Result.failure_result(
                PatientNotFoundError("Patient not found", patient_id=record.patient_id),
                error_details={"patient_id": record.patient_id},
            )

        result = self.repository.insert_case(
            record.to_storage(),
            on_persisted=self.engine.resolve_case,
        )
        if result.is_success():
            logger.info(f"Created case {result.value.get('id')}")
        elif result.error_type == "DuplicateCaseNumberError":
            logger.info("Rejected duplicate case number")
        else:
            logger.error(f"Failed to create case: {result.error}")
        return result

    def case_metrics(
        self,
        patient_id: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Result[dict[str, Any]]:
        """Aggregate case counts by status and visit type."""
        details = [
            f"{name}: Invalid date format (expected YYYY-MM-DD)"
            for name, value in (("date_from", date_from), ("date_to", date_to))
            if value and not _is_iso_date(value)
        ]
        if details:
            return Result.failure_result(
                ValidationError("Validation failed", details=details),
                error_details={"details": details},
            )

        if patient_id:
            patient_id = normalize_uuid(patient_id)
        result = self.repository.case_metrics(patient_id, date_from, date_to)
        if result.is_failure():
            return result

        rows = result.value or []
        statuses = Counter(status for status, _ in rows)
        visit_types = Counter(visit_type for _, visit_type in rows if visit_type)

        return Result.success_result({
            "total_cases": len(rows),
            "active_cases": statuses.get(CaseStatus.ACTIVE.value, 0),
            "completed_cases": statuses.get(CaseStatus.COMPLETED.value, 0),
            "pending_cases": statuses.get(CaseStatus.PENDING.value, 0),
            "cancelled_cases": statuses.get(CaseStatus.CANCELLED.value, 0),
            "visit_types": dict(visit_types),
            "filters": {
                "patient_id": patient_id or None,
                "date_from": date_from or None,
                "date_to": date_to or None,
            },
        })
