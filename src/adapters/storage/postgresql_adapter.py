"""PostgreSQL Storage Adapter.

This adapter implements the case store, the master-data gateway and the
patient directory on PostgreSQL, the production backend.

Security Impact:
    - Connection credentials are managed via DatabaseConfig and never logged
    - All statements are parameterized; sort columns come from an allow-list
    - SSL connections supported for secure network communication

Architecture:
    - Implements CaseRepositoryPort, MasterDataPort and PatientDirectoryPort
    - Thread-safe connection pooling (one pooled connection per operation)
    - ``case_no`` uniqueness is enforced by a UNIQUE constraint, never pre-checked
"""

import logging
import threading
from typing import Any, Callable, Iterable, Optional

import psycopg2
import psycopg2.errors
from psycopg2 import pool

from src.adapters.storage.case_rows import (
    INSERT_COLUMNS,
    row_to_record,
    select_list,
    storage_values,
)
from src.domain.enums import CaseStatus, LookupTable
from src.domain.ports import (
    CaseQuery,
    CasePage,
    CaseRepositoryPort,
    DuplicateCaseNumberError,
    LookupSource,
    MasterDataPort,
    PatientDirectoryPort,
    Result,
    StorageError,
)
from src.domain.services.case_service import SORTABLE_COLUMNS
from src.domain.utils import escape_like_pattern
from src.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS patients (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        patient_id TEXT,
        full_name TEXT,
        email TEXT,
        mobile TEXT,
        gender TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS master_data (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        category TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pharmacy_items (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        item_name TEXT NOT NULL,
        generic_name TEXT,
        manufacturer TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS encounters (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        case_no TEXT NOT NULL UNIQUE,
        patient_id UUID NOT NULL REFERENCES patients(id),
        encounter_date DATE NOT NULL,
        status TEXT NOT NULL DEFAULT 'active',
        visit_type TEXT,
        chief_complaint TEXT,
        history_of_present_illness TEXT,
        past_medical_history TEXT,
        examination_findings TEXT,
        treatment_plan TEXT,
        medications_prescribed TEXT,
        follow_up_instructions TEXT,
        diagnosis JSONB NOT NULL DEFAULT '[]'::jsonb,
        complaints JSONB NOT NULL DEFAULT '[]'::jsonb,
        treatments JSONB NOT NULL DEFAULT '[]'::jsonb,
        diagnostic_tests JSONB NOT NULL DEFAULT '[]'::jsonb,
        examination_data JSONB,
        vision_data JSONB,
        extension JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_master_data_category ON master_data(category)",
    "CREATE INDEX IF NOT EXISTS idx_encounters_patient ON encounters(patient_id)",
    "CREATE INDEX IF NOT EXISTS idx_encounters_status ON encounters(status)",
    "CREATE INDEX IF NOT EXISTS idx_encounters_created_at ON encounters(created_at)",
)

_FROM_ENCOUNTERS = "FROM encounters e LEFT JOIN patients p ON p.id = e.patient_id"


def _is_duplicate(error: Exception) -> bool:
    if isinstance(error, psycopg2.errors.UniqueViolation):
        return True
    return getattr(error, "pgcode", None) == UNIQUE_VIOLATION


class PostgreSQLAdapter(CaseRepositoryPort, MasterDataPort, PatientDirectoryPort):
    """PostgreSQL implementation of the case store and master-data gateway.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        connection_string: Full PostgreSQL connection string
        pool_size: Connection pool size
        max_overflow: Maximum connection pool overflow
        pool_timeout: Seconds to wait for a free pooled connection

    ``ThreadedConnectionPool.getconn`` fails at once when every connection is
    out. Borrowing goes through a semaphore sized to the pool instead, so a
    burst of concurrent lookups waits for a free connection.

    Example Usage:
        ```python
        adapter = PostgreSQLAdapter(db_config=get_database_config())
        adapter.initialize_schema()
        ```
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        connection_string: Optional[str] = None,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: float = 30.0,
    ):
        self._connection_pool: Optional[pool.ThreadedConnectionPool] = None
        self._pool_lock = threading.Lock()
        self._initialized = False

        if db_config:
            if db_config.db_type != "postgresql":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match PostgreSQL adapter",
                    operation="__init__"
                )

            if db_config.connection_string:
                self.connection_params = {"dsn": db_config.connection_string.get_secret_value()}
            else:
                if not all([db_config.host, db_config.database]):
                    raise StorageError(
                        "PostgreSQL DatabaseConfig requires host and database",
                        operation="__init__"
                    )
                self.connection_params = {
                    "host": db_config.host,
                    "port": db_config.port or 5432,
                    "database": db_config.database,
                    "user": db_config.username,
                    "sslmode": db_config.ssl_mode or "prefer",
                }
                if db_config.password:
                    self.connection_params["password"] = db_config.password.get_secret_value()

            self.db_config = db_config
            self.pool_size = db_config.pool_size
            self.max_overflow = db_config.max_overflow
            self.pool_timeout = db_config.pool_timeout

        elif connection_string:
            self.connection_params = {"dsn": connection_string}
            self.db_config = DatabaseConfig(db_type="postgresql")
            self.pool_size = pool_size
            self.max_overflow = max_overflow
            self.pool_timeout = pool_timeout

        else:
            raise StorageError(
                "PostgreSQL adapter requires either db_config or connection_string",
                operation="__init__"
            )

        self._slots = threading.BoundedSemaphore(self.max_connections)

    @property
    def max_connections(self) -> int:
        return self.pool_size + self.max_overflow

    def _get_connection_pool(self) -> pool.ThreadedConnectionPool:
        """Get or create the PostgreSQL connection pool (created lazily)."""
        with self._pool_lock:
            if self._connection_pool is None:
                try:
                    self._connection_pool = pool.ThreadedConnectionPool(
                        minconn=1,
                        maxconn=self.max_connections,
                        **self.connection_params
                    )
                    logger.info("Created PostgreSQL connection pool")
                except Exception as e:
                    raise StorageError(
                        f"Failed to create PostgreSQL connection pool: {str(e)}",
                        operation="connect",
                        details={"host": self.connection_params.get("host", "N/A")}
                    )
            return self._connection_pool

    def _get_connection(self):
        """Get a connection from the pool, waiting up to ``pool_timeout`` for one.

        Raises:
            StorageError: If connection cannot be obtained
        """
        if not self._slots.acquire(timeout=self.pool_timeout):
            raise StorageError(
                f"Timed out after {self.pool_timeout}s waiting for a pooled connection",
                operation="get_connection"
            )
        try:
            return self._get_connection_pool().getconn()
        except Exception as e:
            self._slots.release()
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to get connection from pool: {str(e)}",
                operation="get_connection"
            )

    def _return_connection(self, conn) -> None:
        try:
            self._get_connection_pool().putconn(conn)
        except Exception as e:
            logger.warning(f"Error returning connection to pool: {str(e)}")
        finally:
            self._slots.release()

    def _read(self, sql: str, params: list[Any], fetch: str = "all") -> Any:
        """Run one read statement on a pooled connection and release it."""
        conn = self._get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.execute(sql, params)
                rows = cursor.fetchone() if fetch == "one" else cursor.fetchall()
            conn.commit()
            return rows
        except Exception:
            conn.rollback()
            raise
        finally:
            self._return_connection(conn)

    def _ensure_schema(self) -> Result[None]:
        if self._initialized:
            return Result.success_result(None)
        return self.initialize_schema()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def initialize_schema(self) -> Result[None]:
        """Create the patients, master_data, pharmacy_items and encounters tables."""
        conn = None
        try:
            conn = self._get_connection()
            with conn.cursor() as cursor:
                for statement in SCHEMA_STATEMENTS:
                    cursor.execute(statement)
            conn.commit()

            self._initialized = True
            logger.info("Database schema initialized successfully")
            return Result.success_result(None)

        except Exception as e:
            if conn:
                conn.rollback()
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )
        finally:
            if conn:
                self._return_connection(conn)

    # ------------------------------------------------------------------
    # MasterDataPort / PatientDirectoryPort
    # ------------------------------------------------------------------

    def lookup(self, source: LookupSource, ids: Iterable[str]) -> Result[dict[str, str]]:
        """Resolve ids against one source with a single ``= ANY`` query."""
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return Result.success_result({})

        if source.table is LookupTable.PHARMACY_ITEMS:
            sql = "SELECT id::text, item_name FROM pharmacy_items WHERE id::text = ANY(%s)"
            params: list[Any] = [wanted]
        else:
            sql = "SELECT id::text, name FROM master_data WHERE category = %s AND id::text = ANY(%s)"
            params = [source.category, wanted]

        try:
            init_result = self._ensure_schema()
            if init_result.is_failure():
                return init_result
            rows = self._read(sql, params)
            return Result.success_result({str(ref_id): name for ref_id, name in rows})

        except Exception as e:
            error_msg = f"Master-data lookup failed for {source.describe()}: {str(e)}"
            logger.error(error_msg)
            return Result.failure_result(
                StorageError(error_msg, operation="lookup", details={"source": source.describe()}),
                error_type="StorageError"
            )

    def patient_exists(self, patient_id: str) -> Result[bool]:
        try:
            init_result = self._ensure_schema()
            if init_result.is_failure():
                return init_result
            row = self._read("SELECT 1 FROM patients WHERE id::text = %s", [patient_id], fetch="one")
            return Result.success_result(row is not None)

        except Exception as e:
            error_msg = f"Patient lookup failed: {str(e)}"
            logger.error(error_msg)
            return Result.failure_result(
                StorageError(error_msg, operation="patient_exists"),
                error_type="StorageError"
            )

    # ------------------------------------------------------------------
    # CaseRepositoryPort
    # ------------------------------------------------------------------

    @staticmethod
    def _where(query: CaseQuery) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []

        if query.statuses:
            clauses.append("e.status = ANY(%s)")
            params.append(list(query.statuses))
        else:
            clauses.append("e.status != %s")
            params.append(CaseStatus.CANCELLED.value)

        if query.patient_id:
            clauses.append("e.patient_id::text = %s")
            params.append(query.patient_id)

        if query.search:
            clauses.append("e.case_no ILIKE %s ESCAPE '\\'")
            params.append(f"%{escape_like_pattern(query.search)}%")

        return " AND ".join(clauses), params

    def list_cases(self, query: CaseQuery) -> Result[CasePage]:
        sort_by = query.sort_by if query.sort_by in SORTABLE_COLUMNS else "created_at"
        sort_order = "ASC" if query.sort_order == "asc" else "DESC"
        where, params = self._where(query)

        conn = None
        try:
            init_result = self._ensure_schema()
            if init_result.is_failure():
                return init_result

            conn = self._get_connection()
            with conn.cursor() as cursor:
                cursor.execute(f"SELECT COUNT(*) {_FROM_ENCOUNTERS} WHERE {where}", params)
                total = cursor.fetchone()[0]
                cursor.execute(
                    f"SELECT {select_list()} {_FROM_ENCOUNTERS} WHERE {where} "
                    f"ORDER BY e.{sort_by} {sort_order}, e.id {sort_order} LIMIT %s OFFSET %s",
                    [*params, query.limit, query.offset]
                )
                rows = cursor.fetchall()
            conn.commit()

            return Result.success_result(
                CasePage(records=[row_to_record(row) for row in rows], total=int(total))
            )

        except Exception as e:
            if conn:
                conn.rollback()
            error_msg = f"Failed to list cases: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="list_cases"),
                error_type="StorageError"
            )
        finally:
            if conn:
                self._return_connection(conn)

    def get_case(self, case_id: str) -> Result[Optional[dict[str, Any]]]:
        try:
            init_result = self._ensure_schema()
            if init_result.is_failure():
                return init_result
            row = self._read(
                f"SELECT {select_list()} {_FROM_ENCOUNTERS} WHERE e.id::text = %s",
                [case_id],
                fetch="one"
            )
            return Result.success_result(row_to_record(row) if row is not None else None)

        except Exception as e:
            error_msg = f"Failed to fetch case: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="get_case", details={"case_id": case_id}),
                error_type="StorageError"
            )

    def insert_case(
        self,
        record: dict[str, Any],
        on_persisted: Optional[Callable[[dict[str, Any]], Any]] = None,
    ) -> Result[Any]:
        """Insert one case inside a transaction.

        ``on_persisted`` runs against the inserted row before commit; if it
        raises, the transaction is rolled back.
        """
        init_result = self._ensure_schema()
        if init_result.is_failure():
            return init_result

        columns = ", ".join(INSERT_COLUMNS)
        placeholders = ", ".join("%s" for _ in INSERT_COLUMNS)

        conn = None
        try:
            conn = self._get_connection()
            with conn.cursor() as cursor:
                cursor.execute(
                    f"INSERT INTO encounters ({columns}) VALUES ({placeholders}) RETURNING id::text",
                    storage_values(record)
                )
                case_id = cursor.fetchone()[0]
                cursor.execute(
                    f"SELECT {select_list()} {_FROM_ENCOUNTERS} WHERE e.id::text = %s",
                    [case_id]
                )
                persisted = row_to_record(cursor.fetchone())

            value = on_persisted(persisted) if on_persisted else persisted
            conn.commit()

            logger.info(f"Persisted case {case_id}")
            return Result.success_result(value)

        except psycopg2.Error as e:
            if conn:
                conn.rollback()
            if _is_duplicate(e):
                case_no = record.get("case_no")
                return Result.failure_result(
                    DuplicateCaseNumberError("Case number already exists", case_no=case_no),
                    error_details={"case_no": case_no}
                )
            error_msg = f"Failed to insert case: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="insert_case"),
                error_type="StorageError"
            )
        except StorageError as e:
            if conn:
                conn.rollback()
            return Result.failure_result(e, error_type="StorageError")
        except Exception as e:
            if conn:
                conn.rollback()
            logger.warning(f"Rolled back case insert: {type(e).__name__}")
            return Result.failure_result(e)
        finally:
            if conn:
                self._return_connection(conn)

    def case_metrics(
        self,
        patient_id: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Result[list[tuple[str, Optional[str]]]]:
        clauses = ["TRUE"]
        params: list[Any] = []
        if patient_id:
            clauses.append("patient_id::text = %s")
            params.append(patient_id)
        if date_from:
            clauses.append("encounter_date >= %s::date")
            params.append(date_from)
        if date_to:
            clauses.append("encounter_date <= %s::date")
            params.append(date_to)

        try:
            init_result = self._ensure_schema()
            if init_result.is_failure():
                return init_result
            rows = self._read(
                f"SELECT status, visit_type FROM encounters WHERE {' AND '.join(clauses)}",
                params
            )
            return Result.success_result([(status, visit_type) for status, visit_type in rows])

        except Exception as e:
            error_msg = f"Failed to compute case metrics: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="case_metrics"),
                error_type="StorageError"
            )

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def query(self, sql: str, params: Optional[list[Any]] = None) -> Result[list[tuple]]:
        """Run a read-only statement (used by the health check)."""
        try:
            return Result.success_result(self._read(sql, params or []))
        except Exception as e:
            error_msg = f"Query failed: {str(e)}"
            logger.warning(error_msg)
            return Result.failure_result(
                StorageError(error_msg, operation="query"),
                error_type="StorageError"
            )

    def close(self) -> None:
        """Close storage connection pool and release resources."""
        if self._connection_pool is not None:
            try:
                self._connection_pool.closeall()
                self._connection_pool = None
                self._initialized = False
                logger.info("Closed PostgreSQL connection pool")
            except Exception as e:
                logger.warning(f"Error closing connection pool: {str(e)}")
