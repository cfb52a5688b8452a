"""Tests for CachingMasterDataGateway."""

from unittest.mock import Mock

import pytest

from src.domain.enums import LookupTable
from src.domain.ports import LookupSource, Result
from src.infrastructure.master_data_cache import CachingMasterDataGateway

MEDICINES = LookupSource(LookupTable.MASTER_DATA, "medicines")
DOSAGES = LookupSource(LookupTable.MASTER_DATA, "dosages")
PHARMACY = LookupSource(LookupTable.PHARMACY_ITEMS)


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def backend():
    gateway = Mock()
    gateway.lookup.side_effect = lambda source, ids: Result.success_result(
        {i: f"{source.describe()}:{i}" for i in ids if i.startswith("known")}
    )
    return gateway


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(backend, clock):
    return CachingMasterDataGateway(backend, ttl_seconds=60, clock=clock)


class TestCachingMasterDataGateway:

    def test_requires_positive_ttl(self, backend):
        with pytest.raises(ValueError):
            CachingMasterDataGateway(backend, ttl_seconds=0)

    def test_hits_skip_backend(self, cache, backend):
        first = cache.lookup(MEDICINES, ["known-1", "known-2"])
        second = cache.lookup(MEDICINES, ["known-1"])

        assert first.value == second.value | {"known-2": "master_data[medicines]:known-2"}
        assert backend.lookup.call_count == 1

    def test_only_missing_ids_are_fetched(self, cache, backend):
        cache.lookup(MEDICINES, ["known-1"])
        cache.lookup(MEDICINES, ["known-1", "known-2"])

        assert set(backend.lookup.call_args.args[1]) == {"known-2"}

    def test_misses_are_not_cached(self, cache, backend):
        cache.lookup(MEDICINES, ["unknown-1"])
        cache.lookup(MEDICINES, ["unknown-1"])

        assert backend.lookup.call_count == 2

    def test_sources_are_separate(self, cache, backend):
        cache.lookup(MEDICINES, ["known-1"])
        result = cache.lookup(DOSAGES, ["known-1"])

        assert result.value == {"known-1": "master_data[dosages]:known-1"}
        assert backend.lookup.call_count == 2

    def test_entries_expire(self, cache, backend, clock):
        cache.lookup(MEDICINES, ["known-1"])
        clock.now += 61

        cache.lookup(MEDICINES, ["known-1"])

        assert backend.lookup.call_count == 2

    def test_failures_not_cached(self, cache, backend):
        backend.lookup.side_effect = None
        backend.lookup.return_value = Result.failure_result("down", error_type="StorageError")

        result = cache.lookup(MEDICINES, ["known-1"])

        assert result.is_failure()
        assert len(cache) == 0

    def test_invalidate_category(self, cache):
        cache.lookup(MEDICINES, ["known-1"])
        cache.lookup(DOSAGES, ["known-2"])
        cache.lookup(PHARMACY, ["known-3"])

        assert cache.invalidate("medicines") == 1
        assert cache.invalidate("pharmacy_items") == 1
        assert len(cache) == 1
        assert cache.invalidate() == 1
        assert len(cache) == 0

    def test_expired_entries_swept_on_write(self, cache, clock):
        cache.lookup(MEDICINES, ["known-1", "known-2"])
        clock.now += 61

        # Different ids: the expired ones are never read again.
        cache.lookup(DOSAGES, ["known-3"])

        assert len(cache) == 1
        assert cache.lookup(DOSAGES, ["known-3"]).value == {"known-3": "master_data[dosages]:known-3"}
