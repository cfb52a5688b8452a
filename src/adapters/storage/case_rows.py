"""Shared row mapping for the encounter (case) tables.

Both storage adapters persist the same shape: scalar columns for the stable
core, JSON text columns for the embedded collections, and one opaque JSON
``extension`` column. This module owns that mapping so the adapters only
differ in SQL dialect and driver plumbing.
"""

import json
from datetime import date, datetime
from typing import Any, Optional, Sequence

from src.domain.case_record import NARRATIVE_FIELDS

JSON_COLUMNS = (
    "diagnosis",
    "complaints",
    "treatments",
    "diagnostic_tests",
    "examination_data",
    "vision_data",
    "extension",
)

# Columns written on insert (``id`` and timestamps are store-managed)
INSERT_COLUMNS = (
    "case_no",
    "patient_id",
    "encounter_date",
    "status",
    *NARRATIVE_FIELDS,
    *JSON_COLUMNS,
)

ENCOUNTER_COLUMNS = ("id", *INSERT_COLUMNS, "created_at", "updated_at")

PATIENT_SUMMARY_COLUMNS = ("id", "patient_id", "full_name", "email", "mobile", "gender")

# Defaults for collections whose column is NULL
_EMPTY_JSON = {
    "diagnosis": list,
    "complaints": list,
    "treatments": list,
    "diagnostic_tests": list,
    "extension": dict,
}


def select_list(encounter_alias: str = "e", patient_alias: str = "p") -> str:
    """SELECT list for an encounter joined to its patient summary."""
    columns = [f"{encounter_alias}.{name}" for name in ENCOUNTER_COLUMNS]
    columns += [
        f"{patient_alias}.{name} AS patient_{name}"
        for name in PATIENT_SUMMARY_COLUMNS
    ]
    return ", ".join(columns)


def storage_values(record: dict[str, Any]) -> list[Any]:
    """Order a ``CaseRecord.to_storage()`` dict as INSERT_COLUMNS values."""
    values = []
    for name in INSERT_COLUMNS:
        value = record.get(name)
        if name in JSON_COLUMNS:
            if value is None and name in _EMPTY_JSON:
                value = _EMPTY_JSON[name]()
            value = json.dumps(value) if value is not None else None
        values.append(value)
    return values


def _load_json(value: Any) -> Any:
    if value is None or not isinstance(value, (str, bytes)):
        return value
    return json.loads(value)


def _iso(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def row_to_record(row: Sequence[Any]) -> dict[str, Any]:
    """Map one ``select_list()`` row to an API-shaped case record.

    Extension fields are merged back at the top level but never overwrite
    a known column.
    """
    width = len(ENCOUNTER_COLUMNS)
    record = dict(zip(ENCOUNTER_COLUMNS, row[:width]))

    for name in JSON_COLUMNS:
        record[name] = _load_json(record[name])
        if record[name] is None and name in _EMPTY_JSON:
            record[name] = _EMPTY_JSON[name]()

    for name in ("id", "patient_id"):
        if record[name] is not None:
            record[name] = str(record[name])
    for name in ("encounter_date", "created_at", "updated_at"):
        record[name] = _iso(record[name])

    extension = record.pop("extension") or {}
    for key, value in extension.items():
        record.setdefault(key, value)

    record["patients"] = _patient_summary(row[width:])
    return record


def _patient_summary(values: Sequence[Any]) -> Optional[dict[str, Any]]:
    summary = dict(zip(PATIENT_SUMMARY_COLUMNS, values))
    if summary.get("id") is None:
        return None
    summary["id"] = str(summary["id"])
    return summary
