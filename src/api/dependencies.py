"""Dependency injection for the case API.

This module wires the configured storage adapter, the (optionally cached)
master-data gateway, the reference resolution engine and the case service
for FastAPI routes. Tests replace any of them through
``app.dependency_overrides``.
"""

import logging
from functools import lru_cache
from typing import Annotated, Union

from fastapi import Depends

from src.adapters.storage import DuckDBAdapter, PostgreSQLAdapter
from src.domain.ports import MasterDataPort, StorageError
from src.domain.services import CaseService, CategoryResolver, ReferenceResolutionEngine
from src.infrastructure.config_manager import get_database_config
from src.infrastructure.master_data_cache import CachingMasterDataGateway
from src.infrastructure.settings import Settings

logger = logging.getLogger(__name__)

StorageAdapter = Union[DuckDBAdapter, PostgreSQLAdapter]


@lru_cache()
def get_settings() -> Settings:
    """Application settings (cached)."""
    return Settings()


@lru_cache()
def get_storage_adapter() -> StorageAdapter:
    """Get storage adapter instance (cached).

    The adapter serves as case repository, master-data gateway and patient
    directory. The schema is created on first use.

    Raises:
        StorageError: If the schema cannot be initialized
    """
    db_config = get_database_config()

    if db_config.db_type == "postgresql":
        logger.debug(f"Creating PostgreSQL adapter with host: {db_config.host}")
        adapter: StorageAdapter = PostgreSQLAdapter(db_config=db_config)
    else:
        logger.debug(f"Creating DuckDB adapter with path: {db_config.db_path or ':memory:'}")
        adapter = DuckDBAdapter(db_config=db_config)

    result = adapter.initialize_schema()
    if result.is_failure():
        raise StorageError(result.error, operation="initialize_schema")
    return adapter


@lru_cache()
def _master_data_gateway(storage: MasterDataPort, ttl: float) -> MasterDataPort:
    if ttl > 0:
        logger.info(f"Master-data cache enabled (ttl={ttl}s)")
        return CachingMasterDataGateway(storage, ttl_seconds=ttl)
    return storage


def get_master_data_gateway(
    storage: Annotated[StorageAdapter, Depends(get_storage_adapter)],
) -> MasterDataPort:
    """Master-data gateway, wrapped in a TTL cache when one is configured.

    One cache instance is kept per storage adapter.
    """
    return _master_data_gateway(storage, get_settings().master_data_cache_ttl)


def get_reference_engine(
    gateway: Annotated[MasterDataPort, Depends(get_master_data_gateway)],
) -> ReferenceResolutionEngine:
    return ReferenceResolutionEngine(
        CategoryResolver(gateway),
        max_workers=get_settings().resolver_max_workers,
    )


def get_case_service(
    storage: Annotated[StorageAdapter, Depends(get_storage_adapter)],
    engine: Annotated[ReferenceResolutionEngine, Depends(get_reference_engine)],
) -> CaseService:
    return CaseService(repository=storage, patients=storage, engine=engine)


# Type aliases for dependency injection
SettingsDep = Annotated[Settings, Depends(get_settings)]
StorageDep = Annotated[StorageAdapter, Depends(get_storage_adapter)]
CaseServiceDep = Annotated[CaseService, Depends(get_case_service)]
