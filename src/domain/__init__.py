"""Domain layer for the case reference-resolution service.

This module contains the core business logic and case record schemas.
All domain models are pure Python with no external dependencies beyond Pydantic.
"""

from .case_record import (
    CaseRecord,
    Complaint,
    Treatment,
    DiagnosticTest,
    Surgery,
    VisionData,
)

__all__ = [
    "CaseRecord",
    "Complaint",
    "Treatment",
    "DiagnosticTest",
    "Surgery",
    "VisionData",
]
