"""Domain Utilities - Helper functions shared by the case pipeline.

This module provides small pure helpers: identifier shape checks, blank-value
detection, LIKE-pattern escaping and lenient query-parameter parsing.
"""

import re
from typing import Any, Iterable, Optional

# Canonical 8-4-4-4-12 hex layout, any version, case-insensitive.
UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_uuid(value: Any) -> bool:
    """Return True if ``value`` is a string shaped like a UUID.

    This is a syntactic check only; it says nothing about whether the id
    exists in master data.
    """
    return isinstance(value, str) and UUID_PATTERN.match(value.strip()) is not None


def normalize_uuid(value: str) -> str:
    """Return UUID-shaped ``value`` stripped and lowercased; other strings unchanged.

    PostgreSQL renders ``uuid`` columns in lowercase, so ids are compared in
    that form everywhere.
    """
    if is_uuid(value):
        return value.strip().lower()
    return value


def is_blank(value: Any) -> bool:
    """Return True for None, empty strings and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def escape_like_pattern(term: str) -> str:
    """Escape LIKE/ILIKE metacharacters so ``term`` matches literally.

    Backslash is escaped first so that the escapes added for ``%`` and ``_``
    survive. Callers must use ``ESCAPE '\\'`` in the SQL.
    """
    return (
        term.replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )


def parse_int_param(
    value: Optional[str],
    default: int,
    minimum: int = 1,
    maximum: Optional[int] = None,
) -> int:
    """Parse an integer query parameter without ever raising.

    Non-numeric or below-minimum values fall back to ``default``; values above
    ``maximum`` clamp to ``maximum``.
    """
    if value is None:
        return default
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    if parsed < minimum:
        return default
    if maximum is not None and parsed > maximum:
        return maximum
    return parsed


def parse_array_param(values: Optional[Iterable[str]]) -> list[str]:
    """Flatten repeated and/or comma-delimited query values into a list."""
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    parsed: list[str] = []
    for raw in values:
        if raw is None:
            continue
        parsed.extend(part.strip() for part in str(raw).split(",") if part.strip())
    return parsed


def filter_allowed(values: Iterable[str], allowed: Iterable[str]) -> list[str]:
    """Keep values present in ``allowed`` (case-insensitive), canonicalised and deduplicated."""
    canonical = {item.lower(): item for item in allowed}
    kept: list[str] = []
    for value in values:
        match = canonical.get(value.lower())
        if match is not None and match not in kept:
            kept.append(match)
    return kept
