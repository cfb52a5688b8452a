"""Tests for the case endpoints.

The storage dependency is overridden with an in-memory DuckDB adapter seeded
with one patient and a small master-data vocabulary.
"""

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from src.adapters.storage.duckdb_adapter import DuckDBAdapter
from src.api.dependencies import get_case_service, get_master_data_gateway, get_storage_adapter
from src.api.main import app
from src.domain.ports import MasterDataPort, Result

PATIENT_ID = "aaaaaaaa-aaaa-4aaa-8aaa-aaaaaaaaaaaa"
UNKNOWN_PATIENT_ID = "ffffffff-ffff-4fff-8fff-ffffffffffff"
DRUG_A = "aaaaaaaa-0000-4000-8000-00000000000a"
DRUG_C = "cccccccc-0000-4000-8000-00000000000c"
DRUG_MISSING = "dddddddd-0000-4000-8000-00000000000d"
COMPLAINT = "11111111-1111-4111-8111-111111111111"
SURGERY_ID = "14141414-1111-4111-8111-111111111111"


@pytest.fixture
def storage():
    adapter = DuckDBAdapter(db_path=":memory:")
    adapter.initialize_schema()
    conn = adapter._get_connection()
    conn.execute(
        "INSERT INTO patients (id, patient_id, full_name, gender) VALUES (?, 'MRN-1', 'Asha Rao', 'female')",
        [PATIENT_ID],
    )
    conn.executemany(
        "INSERT INTO master_data (id, category, name) VALUES (?, ?, ?)",
        [
            [DRUG_A, "medicines", "Atropine"],
            [COMPLAINT, "complaints", "Blurred vision"],
            [SURGERY_ID, "surgery_types", "Trabeculectomy"],
        ],
    )
    conn.execute("INSERT INTO pharmacy_items (id, item_name) VALUES (?, 'Legacy Drops')", [DRUG_C])
    yield adapter
    adapter.close()


@pytest.fixture
def client(storage):
    """Test client with the storage dependency overridden."""
    app.dependency_overrides = {}
    app.dependency_overrides[get_storage_adapter] = lambda: storage

    yield TestClient(app)

    app.dependency_overrides.clear()


def _payload(case_no="CASE-001", **overrides):
    payload = {
        "case_no": case_no,
        "patient_id": PATIENT_ID,
        "encounter_date": "2024-03-15",
        "visit_type": "First",
        "complaints": [{"complaintId": COMPLAINT}, {"complaintId": ""}],
        "treatments": [{"drug_id": DRUG_A}, {"drug_id": DRUG_C}, {"drug_id": DRUG_MISSING}],
        "examination_data": {"surgeries": [{"surgery_name": SURGERY_ID}, {"surgery_name": "Cataract surgery"}]},
    }
    payload.update(overrides)
    return payload


class TestCreateCase:
    """Tests for POST /api/cases."""

    def test_create_returns_resolved_case(self, client):
        response = client.post("/api/cases", json=_payload(referral_source="Camp"))

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Case created successfully"
        case = body["data"]
        assert case["status"] == "active"
        assert case["referral_source"] == "Camp"
        assert case["patients"]["full_name"] == "Asha Rao"
        assert [c["complaint_name"] for c in case["complaints"]] == ["Blurred vision"]
        assert [t["drug_name"] for t in case["treatments"]] == ["Atropine", "Legacy Drops", "Unknown"]
        first, second = case["examination_data"]["surgeries"]
        assert first == {"surgery_name": "Trabeculectomy", "surgery_name_original": SURGERY_ID}
        assert second == {"surgery_name": "Cataract surgery"}

    def test_persisted_record_holds_raw_ids(self, client, storage):
        case_id = client.post("/api/cases", json=_payload()).json()["data"]["id"]

        raw = storage.get_case(case_id).value

        assert raw["treatments"][0] == {"drug_id": DRUG_A}
        assert raw["examination_data"]["surgeries"][0] == {"surgery_name": SURGERY_ID}

    def test_client_display_fields_are_dropped(self, client, storage):
        payload = _payload(
            treatments=[{"drug_id": DRUG_A, "drug_name": "Forged", "eye_name": "Forged eye"}],
            examination_data={"surgeries": [
                {"surgery_name": "Cataract surgery", "surgery_name_original": SURGERY_ID},
            ]},
        )

        response = client.post("/api/cases", json=payload)

        assert response.status_code == 201
        case = response.json()["data"]
        assert case["treatments"] == [{"drug_id": DRUG_A, "drug_name": "Atropine"}]
        assert case["examination_data"]["surgeries"] == [{"surgery_name": "Cataract surgery"}]

        raw = storage.get_case(case["id"]).value
        assert raw["treatments"] == [{"drug_id": DRUG_A}]
        assert raw["examination_data"]["surgeries"] == [{"surgery_name": "Cataract surgery"}]

    def test_uppercase_ids_are_canonicalised(self, client, storage):
        payload = _payload(patient_id=PATIENT_ID.upper(), treatments=[{"drug_id": DRUG_A.upper()}])

        response = client.post("/api/cases", json=payload)

        assert response.status_code == 201
        case = response.json()["data"]
        assert case["patient_id"] == PATIENT_ID
        assert case["treatments"] == [{"drug_id": DRUG_A, "drug_name": "Atropine"}]

        listed = client.get("/api/cases", params={"patient_id": PATIENT_ID.upper()}).json()
        assert [c["id"] for c in listed["data"]] == [case["id"]]
        assert client.get(f"/api/cases/{case['id'].upper()}").status_code == 200

    def test_validation_reports_all_errors(self, client):
        payload = _payload(treatments=[{"drug_id": "not-a-uuid"}])
        del payload["case_no"]

        response = client.post("/api/cases", json=payload)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation failed"
        assert sorted(body["details"]) == [
            "case_no: Case number is required",
            "treatments.0.drug_id: Invalid drug ID",
        ]

    def test_malformed_json(self, client):
        response = client.post("/api/cases", content="{not json", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"

    def test_non_object_body(self, client):
        response = client.post("/api/cases", json=["a"])

        assert response.status_code == 400
        assert response.json()["details"] == ["Request body must be a JSON object"]

    def test_unknown_patient(self, client):
        response = client.post("/api/cases", json=_payload(patient_id=UNKNOWN_PATIENT_ID))

        assert response.status_code == 404
        assert response.json() == {"error": "Patient not found"}

    def test_duplicate_case_no(self, client):
        assert client.post("/api/cases", json=_payload("DUP-1")).status_code == 201

        response = client.post("/api/cases", json=_payload("DUP-1"))

        assert response.status_code == 409
        assert response.json() == {"error": "Case number already exists"}

    def test_gateway_failure_persists_nothing(self, client, storage):
        failing = Mock(spec=MasterDataPort)
        failing.lookup.return_value = Result.failure_result("connection reset", error_type="StorageError")
        app.dependency_overrides[get_master_data_gateway] = lambda: failing

        response = client.post("/api/cases", json=_payload("GW-1"))

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to resolve master data references"}
        del app.dependency_overrides[get_master_data_gateway]
        assert client.get("/api/cases", params={"search": "GW-1"}).json()["pagination"]["total"] == 0


class TestListCases:
    """Tests for GET /api/cases."""

    @pytest.fixture
    def seeded(self, client):
        for case_no, status in [("L-1", "active"), ("L-2", "completed"), ("L-3", "cancelled"), ("L-4", "pending")]:
            assert client.post("/api/cases", json=_payload(case_no, status=status)).status_code == 201
        return client

    def test_default_excludes_cancelled(self, seeded):
        body = seeded.get("/api/cases").json()

        assert body["success"] is True
        assert sorted(c["case_no"] for c in body["data"]) == ["L-1", "L-2", "L-4"]
        assert body["pagination"]["total"] == 3

    def test_status_filter_includes_cancelled(self, seeded):
        body = seeded.get("/api/cases", params={"status": "cancelled"}).json()

        assert [c["case_no"] for c in body["data"]] == ["L-3"]

    def test_status_comma_and_repeated(self, seeded):
        body = seeded.get("/api/cases?status=cancelled,completed&status=nonsense").json()

        assert sorted(c["case_no"] for c in body["data"]) == ["L-2", "L-3"]

    def test_list_is_resolved(self, seeded):
        case = seeded.get("/api/cases", params={"search": "L-1"}).json()["data"][0]

        assert case["treatments"][1]["drug_name"] == "Legacy Drops"

    def test_bad_params_never_error(self, seeded):
        response = seeded.get("/api/cases", params={
            "page": "-1", "limit": "1000", "sortBy": "password", "sortOrder": "sideways",
        })

        assert response.status_code == 200
        assert response.json()["pagination"]["page"] == 1
        assert response.json()["pagination"]["limit"] == 100

    def test_pagination(self, seeded):
        body = seeded.get("/api/cases", params={"limit": "2", "page": "2", "sortBy": "case_no", "sortOrder": "asc"}).json()

        assert [c["case_no"] for c in body["data"]] == ["L-4"]
        assert body["pagination"] == {
            "page": 2, "limit": 2, "total": 3, "totalPages": 2,
            "hasNextPage": False, "hasPrevPage": True,
        }

    def test_get_case(self, seeded):
        case_id = seeded.get("/api/cases", params={"search": "L-2"}).json()["data"][0]["id"]

        response = seeded.get(f"/api/cases/{case_id}")

        assert response.status_code == 200
        assert response.json()["data"]["case_no"] == "L-2"

    def test_get_case_not_found(self, client):
        assert client.get("/api/cases/ffffffff-0000-4000-8000-000000000000").status_code == 404
        assert client.get("/api/cases/not-an-id").json() == {"error": "Case not found"}

    def test_metrics(self, seeded):
        body = seeded.get("/api/cases/metrics", params={"patient_id": PATIENT_ID}).json()

        assert body["total_cases"] == 4
        assert body["cancelled_cases"] == 1
        assert body["visit_types"] == {"First": 4}
        assert body["filters"]["patient_id"] == PATIENT_ID

    def test_metrics_bad_date(self, client):
        response = client.get("/api/cases/metrics", params={"date_to": "tomorrow"})

        assert response.status_code == 400
        assert response.json()["details"] == ["date_to: Invalid date format (expected YYYY-MM-DD)"]


class TestErrorMapping:

    def test_storage_failure_is_500(self, client):
        service = Mock()
        service.list_cases.return_value = Result.failure_result("boom", error_type="StorageError")
        app.dependency_overrides[get_case_service] = lambda: service

        response = client.get("/api/cases")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    def test_unhandled_exception_is_500(self, client):
        service = Mock()
        service.get_case.side_effect = RuntimeError("unexpected")
        app.dependency_overrides[get_case_service] = lambda: service

        response = client.get(f"/api/cases/{PATIENT_ID}")

        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"

    def test_request_headers(self, client):
        response = client.get("/api/cases", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Process-Time" in response.headers
