"""Record Sanitizer - normalizes raw case payloads before validation.

Forms submit placeholder rows (a blank row added by "Add Item" and never
filled in). The sanitizer removes any nested item that lacks its one
mandatory reference and turns blank optional references into absent keys,
so the validator never sees "empty but present" rows. Display fields such as
``drug_name`` or ``surgery_name_original`` are dropped as well: only raw ids
and literals are stored.

``clean`` is pure: the input payload is never mutated and cleaning an
already-clean payload returns an equal payload.
"""

import logging
from typing import Any, Callable, Iterable

from src.domain.references import (
    COMPLAINT_FIELDS,
    DIAGNOSTIC_TEST_FIELDS,
    SURGERY_FIELDS,
    TREATMENT_FIELDS,
    derived_keys,
)
from src.domain.utils import is_blank

logger = logging.getLogger(__name__)


def _clean_items(
    items: Any,
    required: str,
    optional: Iterable[str],
    derived: frozenset[str] = frozenset(),
) -> Any:
    """Drop items missing ``required``; strip blank ``optional`` keys and all ``derived`` keys.

    Non-list values are returned untouched for the validator to reject.
    """
    if not isinstance(items, list):
        return items

    cleaned = []
    for item in items:
        if not isinstance(item, dict) or is_blank(item.get(required)):
            continue
        kept = {key: value for key, value in item.items() if key not in derived}
        for key in optional:
            if key in kept and is_blank(kept[key]):
                del kept[key]
        cleaned.append(kept)

    dropped = len(items) - len(cleaned)
    if dropped:
        logger.debug(f"Dropped {dropped} incomplete item(s) missing '{required}'")
    return cleaned


def _clean_complaints(items: Any) -> Any:
    return _clean_items(items, "complaintId", ("categoryId",), derived_keys(COMPLAINT_FIELDS))


def _clean_treatments(items: Any) -> Any:
    return _clean_items(items, "drug_id", ("dosage_id", "route_id"), derived_keys(TREATMENT_FIELDS))


def _clean_diagnostic_tests(items: Any) -> Any:
    return _clean_items(items, "test_id", (), derived_keys(DIAGNOSTIC_TEST_FIELDS))


def _clean_surgeries(items: Any) -> Any:
    return _clean_items(
        items,
        "surgery_name",
        ("anesthesia", "eye", "surgery_kind"),
        derived_keys(SURGERY_FIELDS),
    )


COLLECTION_CLEANERS: dict[str, Callable[[Any], Any]] = {
    "complaints": _clean_complaints,
    "treatments": _clean_treatments,
    "diagnostic_tests": _clean_diagnostic_tests,
}


def clean(raw_payload: Any) -> Any:
    """Return a cleaned copy of ``raw_payload``.

    Parameters:
        raw_payload: Decoded JSON body of a create request

    Returns:
        A new dict with incomplete nested items dropped (order preserved) and
        blank optional references removed. Non-dict payloads are returned
        unchanged for the validator to reject.
    """
    if not isinstance(raw_payload, dict):
        return raw_payload

    payload = dict(raw_payload)

    for key, cleaner in COLLECTION_CLEANERS.items():
        if key in payload:
            payload[key] = cleaner(payload[key])

    examination = payload.get("examination_data")
    if isinstance(examination, dict) and "surgeries" in examination:
        examination = dict(examination)
        examination["surgeries"] = _clean_surgeries(examination["surgeries"])
        payload["examination_data"] = examination

    if "status" in payload and is_blank(payload["status"]):
        del payload["status"]

    return payload
