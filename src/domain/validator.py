"""Schema Validator - turns a cleaned payload into a validated CaseRecord.

Every violated constraint becomes one message of the form
``<dotted.field.path>: <message>`` so a form can highlight every problem at
once.
"""

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from src.domain.case_record import CaseRecord
from src.domain.ports import Result, ValidationError

logger = logging.getLogger(__name__)


def format_errors(exc: PydanticValidationError) -> list[str]:
    """Render pydantic errors as ``path: message`` strings, in schema order."""
    messages = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "Invalid value")
        messages.append(f"{path}: {message}" if path else message)
    return messages


def validate(cleaned_payload: Any) -> Result[CaseRecord]:
    """Validate a cleaned payload.

    Parameters:
        cleaned_payload: Output of ``sanitizer.clean``

    Returns:
        Result[CaseRecord]: Success with the validated record, or a failure
        with ``error_type="ValidationError"`` and ``error_details["details"]``
        holding every field error.
    """
    if not isinstance(cleaned_payload, dict):
        details = ["Request body must be a JSON object"]
        return Result.failure_result(
            ValidationError("Validation failed", details=details),
            error_details={"details": details},
        )

    try:
        record = CaseRecord.model_validate(cleaned_payload)
    except PydanticValidationError as e:
        details = format_errors(e)
        logger.info(f"Case payload rejected with {len(details)} error(s)")
        return Result.failure_result(
            ValidationError("Validation failed", details=details),
            error_details={"details": details},
        )

    return Result.success_result(record)
