"""Master-data cache.

``CachingMasterDataGateway`` wraps any MasterDataPort with a per-(source, id)
TTL cache. It is injected explicitly by the API dependencies when
``CR_MASTER_DATA_CACHE_TTL`` is positive; nothing in the domain knows it exists.

Cache contract:
    - Only ids that were found are cached; misses are re-queried every time
    - Failed lookups are never cached
    - Expired entries are swept on write, at most once per TTL period, so
      the map never holds entries older than two TTLs
    - ``invalidate()`` drops everything, ``invalidate(category)`` drops the
      entries of one master-data category (or one table, for sources
      without a category)
"""

import logging
import threading
import time
from typing import Callable, Iterable, Optional

from src.domain.ports import LookupSource, MasterDataPort, Result

logger = logging.getLogger(__name__)


class CachingMasterDataGateway(MasterDataPort):
    """TTL cache in front of a master-data gateway.

    Parameters:
        gateway: The wrapped gateway
        ttl_seconds: Entry lifetime; must be positive
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        gateway: MasterDataPort,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.gateway = gateway
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[LookupSource, str], tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + ttl_seconds

    def lookup(self, source: LookupSource, ids: Iterable[str]) -> Result[dict[str, str]]:
        wanted = set(ids)
        now = self._clock()
        names: dict[str, str] = {}

        with self._lock:
            for ref_id in wanted:
                entry = self._entries.get((source, ref_id))
                if entry is None:
                    continue
                name, expires_at = entry
                if expires_at > now:
                    names[ref_id] = name
                else:
                    del self._entries[(source, ref_id)]

        missing = wanted - names.keys()
        if not missing:
            logger.debug(f"Master-data cache hit for {len(names)} id(s) in {source.describe()}")
            return Result.success_result(names)

        result = self.gateway.lookup(source, missing)
        if result.is_failure():
            return result

        fetched = result.value or {}
        now = self._clock()
        expires_at = now + self.ttl_seconds
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            for ref_id, name in fetched.items():
                self._entries[(source, ref_id)] = (name, expires_at)

        names.update(fetched)
        return Result.success_result(names)

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._next_sweep = now + self.ttl_seconds
        if expired:
            logger.debug(f"Swept {len(expired)} expired master-data cache entr{'y' if len(expired) == 1 else 'ies'}")

    def invalidate(self, category: Optional[str] = None) -> int:
        """Drop cached entries; returns how many were removed."""
        with self._lock:
            if category is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                stale = [
                    key for key in self._entries
                    if (key[0].category or key[0].table.value) == category
                ]
                for key in stale:
                    del self._entries[key]
                removed = len(stale)

        logger.info(f"Invalidated {removed} master-data cache entr{'y' if removed == 1 else 'ies'}")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
