"""Domain enumerations for case records and master-data references.

Reference kinds replace the stringly-typed master-data category tags at the
seams of the resolution pipeline: every embedded reference field maps to
exactly one ``ReferenceKind``, and each kind owns its lookup chain.
"""

from enum import Enum


class CaseStatus(str, Enum):
    """Lifecycle status of an encounter (case) record.

    ``cancelled`` is the soft-delete marker: cancelled cases are hidden from
    the default listing.
    """

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PENDING = "pending"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


class LookupTable(str, Enum):
    """Physical tables that hold display names for referenced ids."""

    MASTER_DATA = "master_data"
    PHARMACY_ITEMS = "pharmacy_items"


class ReferenceKind(str, Enum):
    """Concrete kinds of master-data references embedded in a case.

    The value is the primary master-data category for the kind.
    """

    COMPLAINT = "complaints"
    COMPLAINT_CATEGORY = "complaint_categories"
    DRUG = "medicines"
    DOSAGE = "dosages"
    ROUTE = "routes"
    DIAGNOSTIC_TEST = "diagnostic_tests"
    SURGERY = "surgeries"
    ANESTHESIA = "anesthesia_types"
    EYE = "eye_selection"


class SurgeryKind(str, Enum):
    """Explicit discriminant for the dual-purpose ``surgery_name`` field."""

    REFERENCE = "reference"
    LITERAL = "literal"
