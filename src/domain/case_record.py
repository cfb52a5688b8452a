"""Case Record Schema Definitions.

This module defines the canonical data models for clinical encounter (case)
records and the semi-structured collections embedded in them: complaints,
treatments, diagnostic tests, surgeries and vision measurements.

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Known fields are strongly typed; unrecognised top-level fields are kept
      in ``model_extra`` and persisted as an opaque extension bag
    - Every validator raises ``PydanticCustomError`` so that error messages are
      fit for direct display next to a form field
"""

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic_core import PydanticCustomError

from src.domain.enums import CaseStatus, SurgeryKind
from src.domain.utils import is_blank, is_uuid, normalize_uuid


def _require_reference(value: Any, message: str) -> str:
    """Return the id in canonical lowercase form or raise a display-ready error."""
    if not is_uuid(value):
        raise PydanticCustomError("invalid_reference", message)
    return normalize_uuid(value)


def _optional_reference(value: Any, message: str) -> Optional[str]:
    if is_blank(value):
        return None
    return _require_reference(value, message)


def _optional_text(value: Any) -> Optional[str]:
    """Accept strings and plain numbers for free-text fields."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise PydanticCustomError("invalid_text", "Must be text")
    if isinstance(value, (int, float)):
        return str(value)
    if not isinstance(value, str):
        raise PydanticCustomError("invalid_text", "Must be text")
    return value


class Complaint(BaseModel):
    """A presenting complaint, referencing the ``complaints`` category.

    Parameters:
        categoryId: Optional reference into ``complaint_categories``
        complaintId: Mandatory reference into ``complaints``
        duration: Free-text duration ("3 days")
        eye: Eye selection tag (reference into ``eye_selection`` or a literal)
        notes: Free-text notes
    """

    categoryId: Optional[str] = None
    complaintId: Optional[str] = Field(None, validate_default=True)
    duration: Optional[str] = None
    eye: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("complaintId", mode="before")
    @classmethod
    def validate_complaint_id(cls, v: Any) -> str:
        return _require_reference(v, "Invalid complaint ID")

    @field_validator("categoryId", mode="before")
    @classmethod
    def validate_category_id(cls, v: Any) -> Optional[str]:
        return _optional_reference(v, "Invalid complaint category ID")

    @field_validator("duration", "eye", "notes", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> Optional[str]:
        return _optional_text(v)

    model_config = ConfigDict(extra="allow")


class Treatment(BaseModel):
    """A prescribed drug.

    ``drug_id`` resolves through the medicines -> pharmacy inventory chain;
    ``dosage_id`` and ``route_id`` resolve against ``dosages``/``routes``.
    """

    drug_id: Optional[str] = Field(None, validate_default=True)
    dosage_id: Optional[str] = None
    route_id: Optional[str] = None
    duration: Optional[str] = None
    eye: Optional[str] = None
    quantity: Optional[str] = None

    @field_validator("drug_id", mode="before")
    @classmethod
    def validate_drug_id(cls, v: Any) -> str:
        return _require_reference(v, "Invalid drug ID")

    @field_validator("dosage_id", mode="before")
    @classmethod
    def validate_dosage_id(cls, v: Any) -> Optional[str]:
        return _optional_reference(v, "Invalid dosage ID")

    @field_validator("route_id", mode="before")
    @classmethod
    def validate_route_id(cls, v: Any) -> Optional[str]:
        return _optional_reference(v, "Invalid route ID")

    @field_validator("duration", "eye", "quantity", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> Optional[str]:
        return _optional_text(v)

    model_config = ConfigDict(extra="allow")


class DiagnosticTest(BaseModel):
    """An ordered diagnostic test, referencing ``diagnostic_tests``."""

    test_id: Optional[str] = Field(None, validate_default=True)
    eye: Optional[str] = None
    type: Optional[str] = None
    problem: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("test_id", mode="before")
    @classmethod
    def validate_test_id(cls, v: Any) -> str:
        return _require_reference(v, "Invalid test ID")

    @field_validator("eye", "type", "problem", "notes", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> Optional[str]:
        return _optional_text(v)

    model_config = ConfigDict(extra="allow")


class Surgery(BaseModel):
    """A surgical procedure recorded under ``examination_data.surgeries``.

    ``surgery_name`` is dual-purpose: a UUID-shaped value is a reference into
    ``surgeries``/``surgery_types``, anything else is a literal name. An
    explicit ``surgery_kind`` overrides that shape check when present.
    """

    surgery_name: Optional[str] = Field(None, validate_default=True)
    anesthesia: Optional[str] = None
    eye: Optional[str] = None
    surgery_kind: Optional[SurgeryKind] = None

    @field_validator("surgery_name", mode="before")
    @classmethod
    def validate_surgery_name(cls, v: Any) -> str:
        if is_blank(v) or not isinstance(v, str):
            raise PydanticCustomError("missing_surgery", "Surgery name is required")
        return v

    @field_validator("anesthesia", "eye", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> Optional[str]:
        return _optional_text(v)

    @field_validator("surgery_kind", mode="before")
    @classmethod
    def validate_surgery_kind(cls, v: Any, info: ValidationInfo) -> Optional[SurgeryKind]:
        if is_blank(v):
            return None
        try:
            kind = SurgeryKind(str(v).strip().lower())
        except ValueError:
            raise PydanticCustomError(
                "invalid_surgery_kind",
                "Invalid surgery kind. Must be one of: reference, literal",
            )
        name = info.data.get("surgery_name")
        if kind is SurgeryKind.REFERENCE and name is not None and not is_uuid(name):
            raise PydanticCustomError(
                "invalid_reference",
                "Invalid surgery ID for a reference surgery",
            )
        return kind

    model_config = ConfigDict(extra="allow")


class ExaminationData(BaseModel):
    """Free-form examination bag; only ``surgeries`` has a fixed shape."""

    surgeries: list[Surgery] = Field(default_factory=list)

    @field_validator("surgeries", mode="before")
    @classmethod
    def default_surgeries(cls, v: Any) -> Any:
        return [] if v is None else v

    model_config = ConfigDict(extra="allow")


class EyeReading(BaseModel):
    """Right/left readings for one vision measurement group."""

    right: Optional[str] = None
    left: Optional[str] = None

    @field_validator("right", "left", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> Optional[str]:
        return _optional_text(v)


class VisionData(BaseModel):
    """Fixed-shape vision measurements. No references to resolve."""

    unaided: Optional[EyeReading] = None
    pinhole: Optional[EyeReading] = None
    aided: Optional[EyeReading] = None
    near: Optional[EyeReading] = None


NARRATIVE_FIELDS = (
    "visit_type",
    "chief_complaint",
    "history_of_present_illness",
    "past_medical_history",
    "examination_findings",
    "treatment_plan",
    "medications_prescribed",
    "follow_up_instructions",
)

# Columns owned by the store or by response enrichment.
RESERVED_FIELDS = frozenset({"id", "created_at", "updated_at", "patients", "extension"})


class CaseRecord(BaseModel):
    """Validated encounter (case) ready for insertion.

    Parameters:
        case_no: Human-assigned case number, unique across cases
        patient_id: Reference to an existing patient (UUID)
        encounter_date: Calendar date (YYYY-MM-DD)
        status: Case status, defaults to ``active``
        diagnosis: Free-text diagnosis lines
        complaints / treatments / diagnostic_tests: Embedded collections
        examination_data: Free-form bag carrying ``surgeries``
        vision_data: Fixed-shape vision measurements

    Unrecognised top-level fields are accepted and exposed via ``extension``.
    """

    case_no: Optional[str] = Field(None, validate_default=True)
    patient_id: Optional[str] = Field(None, validate_default=True)
    encounter_date: Optional[str] = Field(None, validate_default=True)
    status: CaseStatus = Field(default=CaseStatus.ACTIVE, validate_default=True)

    visit_type: Optional[str] = None
    chief_complaint: Optional[str] = None
    history_of_present_illness: Optional[str] = None
    past_medical_history: Optional[str] = None
    examination_findings: Optional[str] = None
    treatment_plan: Optional[str] = None
    medications_prescribed: Optional[str] = None
    follow_up_instructions: Optional[str] = None

    diagnosis: list[str] = Field(default_factory=list)
    complaints: list[Complaint] = Field(default_factory=list)
    treatments: list[Treatment] = Field(default_factory=list)
    diagnostic_tests: list[DiagnosticTest] = Field(default_factory=list)
    examination_data: Optional[ExaminationData] = None
    vision_data: Optional[VisionData] = None

    @field_validator("case_no", mode="before")
    @classmethod
    def validate_case_no(cls, v: Any) -> str:
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if is_blank(v) or not isinstance(v, str):
            raise PydanticCustomError("missing_case_no", "Case number is required")
        v = v.strip()
        if len(v) > 50:
            raise PydanticCustomError("invalid_case_no", "Case number must be at most 50 characters")
        return v

    @field_validator("patient_id", mode="before")
    @classmethod
    def validate_patient_id(cls, v: Any) -> str:
        return _require_reference(v, "Invalid patient ID")

    @field_validator("encounter_date", mode="before")
    @classmethod
    def validate_encounter_date(cls, v: Any) -> str:
        if isinstance(v, date):
            return v.isoformat()
        if not isinstance(v, str) or len(v.strip()) != 10:
            raise PydanticCustomError("invalid_date", "Invalid date format (expected YYYY-MM-DD)")
        try:
            return date.fromisoformat(v.strip()).isoformat()
        except ValueError:
            raise PydanticCustomError("invalid_date", "Invalid date format (expected YYYY-MM-DD)")

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v: Any) -> CaseStatus:
        if isinstance(v, CaseStatus):
            return v
        if is_blank(v):
            return CaseStatus.ACTIVE
        try:
            return CaseStatus(str(v).strip().lower())
        except ValueError:
            raise PydanticCustomError(
                "invalid_status",
                "Invalid status. Must be one of: {allowed}",
                {"allowed": ", ".join(CaseStatus.values())},
            )

    @field_validator(*NARRATIVE_FIELDS, mode="before")
    @classmethod
    def validate_narrative(cls, v: Any) -> Optional[str]:
        return _optional_text(v)

    @field_validator("diagnosis", mode="before")
    @classmethod
    def validate_diagnosis(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list):
            return v
        return [item.strip() if isinstance(item, str) else item for item in v if not is_blank(item)]

    @field_validator("complaints", "treatments", "diagnostic_tests", mode="before")
    @classmethod
    def default_collections(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def extension(self) -> dict[str, Any]:
        """Unrecognised top-level fields, kept opaque.

        Store-managed keys are never accepted from the client.
        """
        return {
            key: value
            for key, value in (self.model_extra or {}).items()
            if key not in RESERVED_FIELDS
        }

    def to_storage(self) -> dict[str, Any]:
        """Dump the known fields for persistence (raw ids and literals only).

        Nested items drop absent optional fields; the extension bag is
        returned under ``extension``.
        """
        known = set(type(self).model_fields)
        record = self.model_dump(mode="json", include=known, exclude_none=True)
        for name in known:
            record.setdefault(name, None)
        record["extension"] = self.extension
        return record

    model_config = ConfigDict(extra="allow")
