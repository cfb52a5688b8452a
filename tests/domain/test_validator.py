"""Unit tests for the schema validator and case record models."""

import pytest

from src.domain import validator
from src.domain.case_record import CaseRecord

PATIENT_ID = "aaaaaaaa-aaaa-4aaa-8aaa-aaaaaaaaaaaa"
DRUG_ID = "44444444-4444-4444-8444-444444444444"
COMPLAINT_ID = "11111111-1111-4111-8111-111111111111"


@pytest.fixture
def valid_payload():
    return {
        "case_no": "CASE-001",
        "patient_id": PATIENT_ID,
        "encounter_date": "2024-03-15",
        "visit_type": "First",
        "complaints": [{"complaintId": COMPLAINT_ID, "duration": "3 days"}],
        "treatments": [{"drug_id": DRUG_ID, "quantity": 2}],
        "examination_data": {"iop": "14", "surgeries": [{"surgery_name": "Phaco"}]},
    }


class TestValidate:
    """Test suite for validator.validate."""

    def test_valid_payload(self, valid_payload):
        result = validator.validate(valid_payload)

        assert result.is_success()
        record = result.value
        assert record.case_no == "CASE-001"
        assert record.status.value == "active"
        assert record.treatments[0].quantity == "2"

    def test_reports_every_violation(self, valid_payload):
        del valid_payload["case_no"]
        valid_payload["treatments"] = [{"drug_id": "not-a-uuid"}]

        result = validator.validate(valid_payload)

        assert result.is_failure()
        assert result.error_type == "ValidationError"
        details = result.error_details["details"]
        assert "case_no: Case number is required" in details
        assert "treatments.0.drug_id: Invalid drug ID" in details
        assert len(details) == 2

    def test_invalid_patient_and_date(self, valid_payload):
        valid_payload["patient_id"] = "123"
        valid_payload["encounter_date"] = "15/03/2024"

        details = validator.validate(valid_payload).error_details["details"]

        assert "patient_id: Invalid patient ID" in details
        assert "encounter_date: Invalid date format (expected YYYY-MM-DD)" in details

    def test_invalid_status_lists_allowed_values(self, valid_payload):
        valid_payload["status"] = "archived"

        details = validator.validate(valid_payload).error_details["details"]

        assert details == ["status: Invalid status. Must be one of: active, completed, cancelled, pending"]

    def test_nested_reference_messages(self, valid_payload):
        valid_payload["complaints"] = [{"complaintId": COMPLAINT_ID, "categoryId": "x"}]
        valid_payload["diagnostic_tests"] = [{"test_id": "nope"}]

        details = validator.validate(valid_payload).error_details["details"]

        assert "complaints.0.categoryId: Invalid complaint category ID" in details
        assert "diagnostic_tests.0.test_id: Invalid test ID" in details

    def test_reference_surgery_kind_requires_uuid(self, valid_payload):
        valid_payload["examination_data"]["surgeries"] = [
            {"surgery_name": "Phaco", "surgery_kind": "reference"}
        ]

        details = validator.validate(valid_payload).error_details["details"]

        assert details == [
            "examination_data.surgeries.0.surgery_kind: Invalid surgery ID for a reference surgery"
        ]

    def test_non_object_body(self):
        result = validator.validate([1, 2])

        assert result.error_details["details"] == ["Request body must be a JSON object"]

    def test_case_no_length(self, valid_payload):
        valid_payload["case_no"] = "X" * 51

        details = validator.validate(valid_payload).error_details["details"]

        assert details == ["case_no: Case number must be at most 50 characters"]


class TestCaseRecordStorage:
    """Test suite for CaseRecord.to_storage and the extension bag."""

    def test_unknown_fields_go_to_extension(self, valid_payload):
        valid_payload["referral_source"] = "Camp"
        valid_payload["id"] = "client-supplied"

        storage = CaseRecord.model_validate(valid_payload).to_storage()

        assert storage["extension"] == {"referral_source": "Camp"}
        assert "referral_source" not in storage
        assert "id" not in storage

    def test_known_fields_always_present(self, valid_payload):
        storage = CaseRecord.model_validate(valid_payload).to_storage()

        assert storage["chief_complaint"] is None
        assert storage["vision_data"] is None
        assert storage["diagnostic_tests"] == []
        assert storage["status"] == "active"
        assert storage["complaints"] == [{"complaintId": COMPLAINT_ID, "duration": "3 days"}]

    def test_diagnosis_blanks_dropped(self, valid_payload):
        valid_payload["diagnosis"] = ["Cataract", " ", "Glaucoma "]

        record = CaseRecord.model_validate(valid_payload)

        assert record.diagnosis == ["Cataract", "Glaucoma"]
