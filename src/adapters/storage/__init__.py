"""Storage adapters for the case reference service.

Each adapter implements the case repository, master-data gateway and patient
directory ports for one database backend.
"""

from src.adapters.storage.duckdb_adapter import DuckDBAdapter
from src.adapters.storage.postgresql_adapter import PostgreSQLAdapter

__all__ = ["DuckDBAdapter", "PostgreSQLAdapter"]
