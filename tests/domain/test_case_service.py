"""Unit tests for CaseService and listing parameter handling."""

from unittest.mock import Mock

import pytest

from src.domain.ports import (
    CaseNotFoundError,
    CasePage,
    CaseQuery,
    DuplicateCaseNumberError,
    GatewayError,
    PatientNotFoundError,
    Result,
    ValidationError,
)
from src.domain.services.case_service import CaseService, build_case_query, pagination_meta

PATIENT_ID = "aaaaaaaa-aaaa-4aaa-8aaa-aaaaaaaaaaaa"
DRUG_ID = "44444444-4444-4444-8444-444444444444"
CASE_ID = "99999999-9999-4999-8999-999999999999"


@pytest.fixture
def repository():
    repo = Mock()
    repo.insert_case.side_effect = lambda record, on_persisted=None: Result.success_result(
        on_persisted({"id": CASE_ID, **record}) if on_persisted else record
    )
    return repo


@pytest.fixture
def patients():
    directory = Mock()
    directory.patient_exists.return_value = Result.success_result(True)
    return directory


@pytest.fixture
def engine():
    resolver = Mock()
    resolver.resolve_case.side_effect = lambda record: {**record, "resolved": True}
    resolver.resolve_cases.side_effect = lambda records: [{**r, "resolved": True} for r in records]
    return resolver


@pytest.fixture
def service(repository, patients, engine):
    return CaseService(repository=repository, patients=patients, engine=engine)


@pytest.fixture
def payload():
    return {
        "case_no": "CASE-1",
        "patient_id": PATIENT_ID,
        "encounter_date": "2024-01-02",
        "treatments": [{"drug_id": DRUG_ID}, {"drug_id": ""}],
    }


class TestBuildCaseQuery:

    def test_defaults(self):
        query = build_case_query()

        assert query == CaseQuery(page=1, limit=50, search="", sort_by="created_at", sort_order="desc")

    @pytest.mark.parametrize("page,limit,expected_page,expected_limit", [
        ("0", "0", 1, 50),
        ("-3", "abc", 1, 50),
        ("2", "500", 2, 100),
        ("x", "25", 1, 25),
    ])
    def test_paging_never_rejects(self, page, limit, expected_page, expected_limit):
        query = build_case_query(page=page, limit=limit)

        assert (query.page, query.limit) == (expected_page, expected_limit)

    def test_sort_allow_list(self):
        assert build_case_query(sort_by="password", sort_order="sideways").sort_by == "created_at"
        assert build_case_query(sort_by="password", sort_order="sideways").sort_order == "desc"
        assert build_case_query(sort_by="case_no", sort_order="ASC").sort_order == "asc"

    def test_status_repeated_and_comma_delimited(self):
        query = build_case_query(status=["active,Cancelled", "bogus", "active"])

        assert query.statuses == ("active", "cancelled")

    def test_offset(self):
        assert build_case_query(page="3", limit="20").offset == 40


class TestPaginationMeta:

    def test_middle_page(self):
        assert pagination_meta(2, 10, 35) == {
            "page": 2, "limit": 10, "total": 35, "totalPages": 4,
            "hasNextPage": True, "hasPrevPage": True,
        }

    def test_empty(self):
        meta = pagination_meta(1, 50, 0)
        assert meta["totalPages"] == 0
        assert meta["hasNextPage"] is False


class TestCreateCase:

    def test_success_resolves_inside_insert(self, service, repository, engine, payload):
        result = service.create_case(payload)

        assert result.is_success()
        assert result.value["resolved"] is True
        stored = repository.insert_case.call_args.args[0]
        assert stored["treatments"] == [{"drug_id": DRUG_ID}]
        assert repository.insert_case.call_args.kwargs["on_persisted"] == engine.resolve_case

    def test_validation_failure_never_reaches_storage(self, service, repository, patients, payload):
        payload["patient_id"] = "bad"

        result = service.create_case(payload)

        assert result.error_type == ValidationError.__name__
        assert "patient_id: Invalid patient ID" in result.error_details["details"]
        patients.patient_exists.assert_not_called()
        repository.insert_case.assert_not_called()

    def test_unknown_patient(self, service, repository, patients, payload):
        patients.patient_exists.return_value = Result.success_result(False)

        result = service.create_case(payload)

        assert result.error_type == PatientNotFoundError.__name__
        assert result.error == "Patient not found"
        assert result.error_details == {"patient_id": PATIENT_ID}
        repository.insert_case.assert_not_called()

    def test_duplicate_passes_through(self, service, repository, payload):
        repository.insert_case.side_effect = None
        repository.insert_case.return_value = Result.failure_result(
            DuplicateCaseNumberError("Case number already exists", case_no="CASE-1")
        )

        result = service.create_case(payload)

        assert result.error_type == DuplicateCaseNumberError.__name__
        assert result.error == "Case number already exists"

    def test_uppercase_patient_id_checked_in_canonical_form(self, service, patients, payload):
        payload["patient_id"] = PATIENT_ID.upper()

        assert service.create_case(payload).is_success()
        patients.patient_exists.assert_called_once_with(PATIENT_ID)


class TestReadPaths:

    def test_list_resolves_whole_page_once(self, service, repository, engine):
        repository.list_cases.return_value = Result.success_result(
            CasePage(records=[{"id": "1"}, {"id": "2"}], total=12)
        )

        result = service.list_cases(CaseQuery(page=1, limit=2))

        assert [r["id"] for r in result.value["data"]] == ["1", "2"]
        assert result.value["pagination"]["totalPages"] == 6
        engine.resolve_cases.assert_called_once()

    def test_list_gateway_failure(self, service, repository, engine):
        repository.list_cases.return_value = Result.success_result(CasePage(records=[{"id": "1"}], total=1))
        engine.resolve_cases.side_effect = GatewayError("down", source="master_data[medicines]")

        result = service.list_cases(CaseQuery())

        assert result.error_type == "GatewayError"

    def test_get_case_not_found(self, service, repository):
        repository.get_case.return_value = Result.success_result(None)

        assert service.get_case(CASE_ID).error_type == CaseNotFoundError.__name__

    def test_get_case_uppercase_id(self, service, repository):
        case_id = "bbbbbbbb-cccc-4ddd-8eee-ffffffffffff"
        repository.get_case.return_value = Result.success_result({"id": case_id})

        assert service.get_case(case_id.upper()).is_success()
        repository.get_case.assert_called_once_with(case_id)

    def test_get_case_non_uuid_is_not_found(self, service, repository):
        assert service.get_case("abc").error_type == "CaseNotFoundError"
        repository.get_case.assert_not_called()

    def test_metrics(self, service, repository):
        repository.case_metrics.return_value = Result.success_result([
            ("active", "First"), ("active", "Follow-up"), ("completed", "First"), ("cancelled", None),
        ])

        metrics = service.case_metrics(patient_id=PATIENT_ID).value

        assert metrics["total_cases"] == 4
        assert metrics["active_cases"] == 2
        assert metrics["cancelled_cases"] == 1
        assert metrics["pending_cases"] == 0
        assert metrics["visit_types"] == {"First": 2, "Follow-up": 1}
        assert metrics["filters"]["patient_id"] == PATIENT_ID

    def test_metrics_rejects_bad_dates(self, service, repository):
        result = service.case_metrics(date_from="yesterday")

        assert result.error_type == "ValidationError"
        assert result.error_details["details"] == ["date_from: Invalid date format (expected YYYY-MM-DD)"]
        repository.case_metrics.assert_not_called()
