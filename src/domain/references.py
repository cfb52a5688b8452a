"""Reference-bearing fields of the embedded case collections.

Each embedded item (complaint, treatment, diagnostic test, surgery) carries
one or more raw references into master data. The tables below describe, per
collection, which raw field holds the reference, which kind of lookup it
needs, and which derived field receives the display name.

Derived fields are produced on read and are never accepted from a client or
persisted; ``derived_keys`` lists them for a collection.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from src.domain.enums import ReferenceKind, SurgeryKind
from src.domain.utils import is_blank, is_uuid, normalize_uuid

UNRESOLVED_NAME = "Unknown"


class MissPolicy(str, Enum):
    """What a field shows when its reference is absent or unresolved."""

    # Structurally mandatory reference: always resolved, miss -> "Unknown".
    REQUIRED = "required"
    # Optional reference: omitted when absent, miss -> "Unknown".
    OPTIONAL = "optional"
    # Value is an id only when UUID-shaped; otherwise, or on a miss, the raw
    # value is already display text.
    REFERENCE_OR_LITERAL = "reference_or_literal"


@dataclass(frozen=True)
class ReferenceField:
    """One reference-bearing field of an embedded item.

    Attributes:
        source: Raw field holding the id (or literal)
        kind: Reference kind, which decides the lookup chain
        target: Field receiving the display name
        policy: Miss policy
        original: Field receiving the raw value when ``target == source``
    """

    source: str
    kind: ReferenceKind
    target: str
    policy: MissPolicy
    original: Optional[str] = None

    @property
    def derived(self) -> tuple[str, ...]:
        """Fields this reference writes on enrichment, other than ``source``."""
        keys = [self.target] if self.target != self.source else []
        if self.original:
            keys.append(self.original)
        return tuple(keys)

    def raw_value(self, item: dict) -> Any:
        if self.original and self.original in item:
            return item[self.original]
        return item.get(self.source)

    def candidate(self, item: dict, value: Any) -> Optional[str]:
        """Return the id to look up for ``value``, or None if it is not a reference.

        UUID-shaped ids are returned in canonical lowercase form.
        """
        if not isinstance(value, str) or is_blank(value):
            return None
        if self.policy is MissPolicy.REFERENCE_OR_LITERAL:
            declared = item.get("surgery_kind") if self.original else None
            if declared == SurgeryKind.LITERAL.value:
                return None
            if declared != SurgeryKind.REFERENCE.value and not is_uuid(value):
                return None
        return normalize_uuid(value)


def _eye(target: str = "eye_name") -> ReferenceField:
    return ReferenceField("eye", ReferenceKind.EYE, target, MissPolicy.REFERENCE_OR_LITERAL)


COMPLAINT_FIELDS = (
    ReferenceField("complaintId", ReferenceKind.COMPLAINT, "complaint_name", MissPolicy.REQUIRED),
    ReferenceField("categoryId", ReferenceKind.COMPLAINT_CATEGORY, "category_name", MissPolicy.OPTIONAL),
    _eye(),
)

TREATMENT_FIELDS = (
    ReferenceField("drug_id", ReferenceKind.DRUG, "drug_name", MissPolicy.REQUIRED),
    ReferenceField("dosage_id", ReferenceKind.DOSAGE, "dosage_name", MissPolicy.OPTIONAL),
    ReferenceField("route_id", ReferenceKind.ROUTE, "route_name", MissPolicy.OPTIONAL),
    _eye(),
)

DIAGNOSTIC_TEST_FIELDS = (
    ReferenceField("test_id", ReferenceKind.DIAGNOSTIC_TEST, "test_name", MissPolicy.REQUIRED),
    _eye(),
)

SURGERY_FIELDS = (
    ReferenceField(
        "surgery_name",
        ReferenceKind.SURGERY,
        "surgery_name",
        MissPolicy.REFERENCE_OR_LITERAL,
        original="surgery_name_original",
    ),
    ReferenceField("anesthesia", ReferenceKind.ANESTHESIA, "anesthesia_name", MissPolicy.REFERENCE_OR_LITERAL),
    _eye(),
)

# Top-level collections; surgeries live one level down in examination_data.
TOP_LEVEL_COLLECTIONS: dict[str, tuple[ReferenceField, ...]] = {
    "complaints": COMPLAINT_FIELDS,
    "treatments": TREATMENT_FIELDS,
    "diagnostic_tests": DIAGNOSTIC_TEST_FIELDS,
}


def derived_keys(fields: tuple[ReferenceField, ...]) -> frozenset[str]:
    return frozenset(key for ref_field in fields for key in ref_field.derived)
