"""Reference Resolution Engine.

Enriches case records with display names for every master-data reference
embedded in their complaints, treatments, diagnostic tests and surgeries.

The engine gathers distinct ids across *all* records and *all* fields,
grouped by reference kind (not by field), and asks the CategoryResolver once
per kind. Kinds are independent, so their lookups fan out over a thread
pool; the fallback steps inside one kind stay sequential.

Invariants:
    - Enrichment is derived, never persisted: the output is a fresh copy
    - Only raw reference fields are read; previously attached ``*_name``
      fields are discarded and re-derived, so re-running is harmless
    - A backend failure aborts the whole batch (GatewayError); a miss
      degrades to "Unknown" or to the original literal
"""

import logging
from collections import defaultdict
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Any, Iterable

from src.domain.enums import ReferenceKind
from src.domain.references import (
    SURGERY_FIELDS,
    TOP_LEVEL_COLLECTIONS,
    UNRESOLVED_NAME,
    MissPolicy,
    ReferenceField,
)
from src.domain.services.category_resolver import CategoryResolver
from src.domain.utils import is_blank

logger = logging.getLogger(__name__)


def _raw_item(item: dict, fields: tuple[ReferenceField, ...]) -> dict:
    """Copy ``item`` with every derived field removed and raw values restored."""
    raw = dict(item)
    for ref_field in fields:
        value = ref_field.raw_value(item)
        if ref_field.original:
            raw.pop(ref_field.original, None)
            raw[ref_field.source] = value
        elif ref_field.target != ref_field.source:
            raw.pop(ref_field.target, None)
    return raw


def _annotate(item: dict, fields: tuple[ReferenceField, ...], names: dict[ReferenceKind, dict[str, str]]) -> dict:
    enriched = dict(item)
    for ref_field in fields:
        value = item.get(ref_field.source)
        if is_blank(value) or not isinstance(value, str):
            if ref_field.policy is MissPolicy.REQUIRED:
                enriched[ref_field.target] = UNRESOLVED_NAME
            continue

        ref_id = ref_field.candidate(item, value)
        resolved = names.get(ref_field.kind, {}).get(ref_id) if ref_id else None

        if ref_field.original:
            # Overwritten in place; keep the id alongside when it was one.
            if ref_id:
                enriched[ref_field.original] = value
            enriched[ref_field.target] = resolved if resolved is not None else value
        elif resolved is not None:
            enriched[ref_field.target] = resolved
        elif ref_field.policy is MissPolicy.REFERENCE_OR_LITERAL:
            enriched[ref_field.target] = value
        else:
            enriched[ref_field.target] = UNRESOLVED_NAME
    return enriched


class ReferenceResolutionEngine:
    """Batch enrichment of case records.

    Parameters:
        resolver: CategoryResolver bound to a master-data gateway
        max_workers: Upper bound on concurrent kind lookups (1 = sequential)
    """

    def __init__(self, resolver: CategoryResolver, max_workers: int = 8):
        self.resolver = resolver
        self.max_workers = max(1, max_workers)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_case(self, record: dict[str, Any]) -> dict[str, Any]:
        """Return an enriched copy of one case record."""
        return self.resolve_cases([record])[0]

    def resolve_cases(self, records: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
        """Return enriched copies of ``records``, resolved in one batch.

        Raises:
            GatewayError: If any master-data lookup fails at the backend.
        """
        raw_records = [self._raw_record(record) for record in records]
        if not raw_records:
            return []

        wanted = self._collect_ids(raw_records)
        names = self._resolve_all(wanted)

        logger.debug(
            f"Resolved {sum(len(ids) for ids in wanted.values())} distinct id(s) "
            f"across {len(wanted)} kind(s) for {len(raw_records)} case(s)"
        )
        return [self._enrich_record(record, names) for record in raw_records]

    # ------------------------------------------------------------------
    # Collection plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _collections(record: dict[str, Any]):
        """Yield (items, fields) for every reference-bearing collection."""
        for key, fields in TOP_LEVEL_COLLECTIONS.items():
            items = record.get(key)
            if isinstance(items, list):
                yield items, fields
        examination = record.get("examination_data")
        if isinstance(examination, dict) and isinstance(examination.get("surgeries"), list):
            yield examination["surgeries"], SURGERY_FIELDS

    @staticmethod
    def _map_collections(record: dict[str, Any], transform) -> dict[str, Any]:
        """Copy ``record`` with every collection's dict items passed through ``transform``."""
        copied = dict(record)
        for key, fields in TOP_LEVEL_COLLECTIONS.items():
            items = copied.get(key)
            if isinstance(items, list):
                copied[key] = [
                    transform(item, fields) if isinstance(item, dict) else item
                    for item in items
                ]
        examination = copied.get("examination_data")
        if isinstance(examination, dict) and isinstance(examination.get("surgeries"), list):
            examination = dict(examination)
            examination["surgeries"] = [
                transform(item, SURGERY_FIELDS) if isinstance(item, dict) else item
                for item in examination["surgeries"]
            ]
            copied["examination_data"] = examination
        return copied

    def _raw_record(self, record: dict[str, Any]) -> dict[str, Any]:
        return self._map_collections(record, _raw_item)

    def _enrich_record(self, record: dict[str, Any], names: dict[ReferenceKind, dict[str, str]]) -> dict[str, Any]:
        return self._map_collections(record, lambda item, fields: _annotate(item, fields, names))

    def _collect_ids(self, records: list[dict[str, Any]]) -> dict[ReferenceKind, set[str]]:
        wanted: dict[ReferenceKind, set[str]] = defaultdict(set)
        for record in records:
            for items, fields in self._collections(record):
                for item in items:
                    if not isinstance(item, dict):
                        continue
                    for ref_field in fields:
                        ref_id = ref_field.candidate(item, item.get(ref_field.source))
                        if ref_id:
                            wanted[ref_field.kind].add(ref_id)
        return dict(wanted)

    # ------------------------------------------------------------------
    # Lookup fan-out
    # ------------------------------------------------------------------

    def _resolve_all(self, wanted: dict[ReferenceKind, set[str]]) -> dict[ReferenceKind, dict[str, str]]:
        if not wanted:
            return {}

        if self.max_workers == 1 or len(wanted) == 1:
            return {kind: self.resolver.resolve(kind, ids) for kind, ids in wanted.items()}

        workers = min(self.max_workers, len(wanted))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ref-resolver") as executor:
            futures = {
                executor.submit(self.resolver.resolve, kind, ids): kind
                for kind, ids in wanted.items()
            }
            done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
            for future in not_done:
                future.cancel()
            # Surface the first failure; in-flight lookups finish and are dropped.
            for future in done:
                error = future.exception()
                if error is not None:
                    raise error
            return {futures[future]: future.result() for future in futures}
