"""Category Resolver Service.

Resolves one kind of master-data reference for a whole batch of records with
one batched gateway call per lookup source, walking the kind's fallback chain
with only the ids that are still unresolved.

Architecture:
    - Pure domain service; the gateway is injected through MasterDataPort
    - A lookup that matches nothing is a normal outcome (ids stay unresolved)
    - A lookup that fails is fatal and raised as GatewayError
"""

import logging
from typing import Iterable, Mapping, Optional

from src.domain.enums import LookupTable, ReferenceKind
from src.domain.ports import GatewayError, LookupSource, MasterDataPort
from src.domain.utils import normalize_uuid

logger = logging.getLogger(__name__)


def _master_data(category: str) -> LookupSource:
    return LookupSource(LookupTable.MASTER_DATA, category)


# Kinds whose vocabulary is split across several tables for historical
# reasons. Every other kind resolves against its own master-data category.
FALLBACK_CHAINS: dict[ReferenceKind, tuple[LookupSource, ...]] = {
    ReferenceKind.DRUG: (
        _master_data(ReferenceKind.DRUG.value),
        LookupSource(LookupTable.PHARMACY_ITEMS),
    ),
    ReferenceKind.SURGERY: (
        _master_data(ReferenceKind.SURGERY.value),
        _master_data("surgery_types"),
    ),
}


def lookup_chain(kind: ReferenceKind) -> tuple[LookupSource, ...]:
    """Return the ordered lookup sources for ``kind``."""
    return FALLBACK_CHAINS.get(kind, (_master_data(kind.value),))


class CategoryResolver:
    """Batch resolver for one reference kind at a time.

    Parameters:
        gateway: Master-data gateway used for the batched lookups
        chains: Optional override of the per-kind lookup chains

    Example:
        ```python
        resolver = CategoryResolver(gateway)
        names = resolver.resolve(ReferenceKind.DRUG, {"a1...", "b2..."})
        drug_name = names.get(drug_id, "Unknown")
        ```
    """

    def __init__(
        self,
        gateway: MasterDataPort,
        chains: Optional[Mapping[ReferenceKind, tuple[LookupSource, ...]]] = None,
    ):
        self.gateway = gateway
        self._chains = dict(chains) if chains is not None else None

    def chain_for(self, kind: ReferenceKind) -> tuple[LookupSource, ...]:
        if self._chains is not None and kind in self._chains:
            return self._chains[kind]
        return lookup_chain(kind)

    def resolve(self, kind: ReferenceKind, ids: Iterable[str]) -> dict[str, str]:
        """Resolve a deduplicated set of ids for one kind.

        Parameters:
            kind: Reference kind to resolve
            ids: Identifiers gathered from the whole batch

        Returns:
            dict[str, str]: Only the ids that were found, mapped to names.
            Absent keys mean "unresolved".

        Raises:
            GatewayError: If any lookup in the chain fails at the backend.
        """
        pending = {value for value in ids if value}
        resolved: dict[str, str] = {}

        # Steps are sequential: each one only sees what earlier steps missed.
        for source in self.chain_for(kind):
            if not pending:
                break

            result = self.gateway.lookup(source, sorted(pending))
            if result.is_failure():
                logger.error(
                    f"Master-data lookup failed for {kind.name} "
                    f"against {source.describe()}: {result.error}"
                )
                raise GatewayError(
                    f"Master-data lookup failed for {source.describe()}",
                    source=source.describe(),
                )

            found = {
                normalize_uuid(ref_id): name
                for ref_id, name in (result.value or {}).items()
                if normalize_uuid(ref_id) in pending
            }
            resolved.update(found)
            pending.difference_update(found)

        if pending:
            logger.debug(f"{len(pending)} {kind.name} id(s) left unresolved")
        return resolved
