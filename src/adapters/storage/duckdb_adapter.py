"""DuckDB Storage Adapter.

This adapter implements the case store, the master-data gateway and the
patient directory on top of DuckDB, an embedded database used for local
development and tests.

Architecture:
    - Implements CaseRepositoryPort, MasterDataPort and PatientDirectoryPort
    - Isolated from domain core - only depends on ports and row mapping
    - One cursor per operation, so concurrent requests never share cursor state
    - ``case_no`` uniqueness is enforced by a UNIQUE constraint, never pre-checked
"""

import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import duckdb

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

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS patients (
        id VARCHAR PRIMARY KEY,
        patient_id VARCHAR,
        full_name VARCHAR,
        email VARCHAR,
        mobile VARCHAR,
        gender VARCHAR,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS master_data (
        id VARCHAR PRIMARY KEY,
        category VARCHAR NOT NULL,
        name VARCHAR NOT NULL,
        description VARCHAR,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pharmacy_items (
        id VARCHAR PRIMARY KEY,
        item_name VARCHAR NOT NULL,
        generic_name VARCHAR,
        manufacturer VARCHAR,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS encounters (
        id VARCHAR PRIMARY KEY,
        case_no VARCHAR NOT NULL UNIQUE,
        patient_id VARCHAR NOT NULL,
        encounter_date DATE NOT NULL,
        status VARCHAR NOT NULL DEFAULT 'active',
        visit_type VARCHAR,
        chief_complaint VARCHAR,
        history_of_present_illness VARCHAR,
        past_medical_history VARCHAR,
        examination_findings VARCHAR,
        treatment_plan VARCHAR,
        medications_prescribed VARCHAR,
        follow_up_instructions VARCHAR,
        diagnosis VARCHAR,
        complaints VARCHAR,
        treatments VARCHAR,
        diagnostic_tests VARCHAR,
        examination_data VARCHAR,
        vision_data VARCHAR,
        extension VARCHAR,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_master_data_category ON master_data(category)",
    "CREATE INDEX IF NOT EXISTS idx_encounters_patient ON encounters(patient_id)",
    "CREATE INDEX IF NOT EXISTS idx_encounters_status ON encounters(status)",
)

_FROM_ENCOUNTERS = "FROM encounters e LEFT JOIN patients p ON p.id = e.patient_id"

DUPLICATE_COMMIT_MARKERS = ("conflict", "constraint violation", "duplicate key")


def _is_duplicate(error: Exception) -> bool:
    """Whether a DuckDB error is a case_no collision.

    Concurrent transactions inserting the same key fail at commit with a
    TransactionException, worded either as a write conflict or as a
    constraint violation depending on the DuckDB release.
    """
    if isinstance(error, duckdb.ConstraintException):
        return True
    if not isinstance(error, duckdb.TransactionException):
        return False
    message = str(error).lower()
    return any(marker in message for marker in DUPLICATE_COMMIT_MARKERS)


class DuckDBAdapter(CaseRepositoryPort, MasterDataPort, PatientDirectoryPort):
    """DuckDB implementation of the case store and master-data gateway.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        db_path: Path to DuckDB database file (or ':memory:' for in-memory)

    Example Usage:
        ```python
        from src.infrastructure.config_manager import get_database_config

        adapter = DuckDBAdapter(db_config=get_database_config())
        adapter.initialize_schema()
        page = adapter.list_cases(CaseQuery(limit=10))
        ```
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        db_path: Optional[str] = None,
    ):
        if db_config:
            if db_config.db_type != "duckdb":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = db_config.db_path or ":memory:"
        else:
            self.db_path = db_path or ":memory:"

        self.db_config = db_config or DatabaseConfig(db_type="duckdb", db_path=self.db_path)
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._connection_lock = threading.Lock()
        self._initialized = False

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise StorageError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__"
                )

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create the root DuckDB connection (created lazily)."""
        with self._connection_lock:
            if self._connection is None:
                try:
                    self._connection = duckdb.connect(self.db_path)
                    logger.info(f"Connected to DuckDB database: {self.db_path}")
                except Exception as e:
                    raise StorageError(
                        f"Failed to connect to DuckDB: {str(e)}",
                        operation="connect",
                        details={"db_path": self.db_path}
                    )
            return self._connection

    def _cursor(self) -> duckdb.DuckDBPyConnection:
        """Return a fresh cursor; cursors are not shared across threads."""
        return self._get_connection().cursor()

    def _ensure_schema(self) -> Result[None]:
        if self._initialized:
            return Result.success_result(None)
        return self.initialize_schema()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def initialize_schema(self) -> Result[None]:
        """Create the patients, master_data, pharmacy_items and encounters tables."""
        try:
            cursor = self._cursor()
            try:
                for statement in SCHEMA_STATEMENTS:
                    cursor.execute(statement)
            finally:
                cursor.close()

            self._initialized = True
            logger.info("Database schema initialized successfully")
            return Result.success_result(None)

        except Exception as e:
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )

    # ------------------------------------------------------------------
    # MasterDataPort / PatientDirectoryPort
    # ------------------------------------------------------------------

    def lookup(self, source: LookupSource, ids: Iterable[str]) -> Result[dict[str, str]]:
        """Resolve ids against one source with a single IN query."""
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return Result.success_result({})

        placeholders = ", ".join("?" for _ in wanted)
        if source.table is LookupTable.PHARMACY_ITEMS:
            sql = f"SELECT id, item_name FROM pharmacy_items WHERE id IN ({placeholders})"
            params: list[Any] = wanted
        else:
            sql = f"SELECT id, name FROM master_data WHERE category = ? AND id IN ({placeholders})"
            params = [source.category, *wanted]

        try:
            init_result = self._ensure_schema()
            if init_result.is_failure():
                return init_result

            cursor = self._cursor()
            try:
                rows = cursor.execute(sql, params).fetchall()
            finally:
                cursor.close()
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

            cursor = self._cursor()
            try:
                row = cursor.execute("SELECT 1 FROM patients WHERE id = ?", [patient_id]).fetchone()
            finally:
                cursor.close()
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
            clauses.append(f"e.status IN ({', '.join('?' for _ in query.statuses)})")
            params.extend(query.statuses)
        else:
            clauses.append("e.status != ?")
            params.append(CaseStatus.CANCELLED.value)

        if query.patient_id:
            clauses.append("e.patient_id = ?")
            params.append(query.patient_id)

        if query.search:
            clauses.append("e.case_no ILIKE ? ESCAPE '\\'")
            params.append(f"%{escape_like_pattern(query.search)}%")

        return " AND ".join(clauses), params

    def list_cases(self, query: CaseQuery) -> Result[CasePage]:
        """Return one page of cases (newest first by default) and the total count."""
        sort_by = query.sort_by if query.sort_by in SORTABLE_COLUMNS else "created_at"
        sort_order = "ASC" if query.sort_order == "asc" else "DESC"
        where, params = self._where(query)

        try:
            init_result = self._ensure_schema()
            if init_result.is_failure():
                return init_result

            cursor = self._cursor()
            try:
                total = cursor.execute(
                    f"SELECT COUNT(*) {_FROM_ENCOUNTERS} WHERE {where}", params
                ).fetchone()[0]
                rows = cursor.execute(
                    f"SELECT {select_list()} {_FROM_ENCOUNTERS} WHERE {where} "
                    f"ORDER BY e.{sort_by} {sort_order}, e.id {sort_order} LIMIT ? OFFSET ?",
                    [*params, query.limit, query.offset]
                ).fetchall()
            finally:
                cursor.close()

            return Result.success_result(
                CasePage(records=[row_to_record(row) for row in rows], total=int(total))
            )

        except Exception as e:
            error_msg = f"Failed to list cases: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="list_cases"),
                error_type="StorageError"
            )

    @staticmethod
    def _fetch_case(cursor: duckdb.DuckDBPyConnection, case_id: str) -> Optional[dict[str, Any]]:
        row = cursor.execute(
            f"SELECT {select_list()} {_FROM_ENCOUNTERS} WHERE e.id = ?", [case_id]
        ).fetchone()
        return row_to_record(row) if row is not None else None

    def get_case(self, case_id: str) -> Result[Optional[dict[str, Any]]]:
        try:
            init_result = self._ensure_schema()
            if init_result.is_failure():
                return init_result

            cursor = self._cursor()
            try:
                return Result.success_result(self._fetch_case(cursor, case_id))
            finally:
                cursor.close()

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

        case_id = str(uuid.uuid4())
        columns = ", ".join(("id", *INSERT_COLUMNS))
        placeholders = ", ".join(
            "CAST(? AS DATE)" if name == "encounter_date" else "?"
            for name in ("id", *INSERT_COLUMNS)
        )

        try:
            cursor = self._cursor()
        except StorageError as e:
            return Result.failure_result(e, error_type="StorageError")

        try:
            cursor.begin()
            try:
                cursor.execute(
                    f"INSERT INTO encounters ({columns}) VALUES ({placeholders})",
                    [case_id, *storage_values(record)]
                )
                persisted = self._fetch_case(cursor, case_id)
                value = on_persisted(persisted) if on_persisted else persisted
                cursor.commit()
            except Exception:
                try:
                    cursor.rollback()
                except duckdb.Error:
                    # A failed commit has already ended the transaction.
                    pass
                raise

            logger.info(f"Persisted case {case_id}")
            return Result.success_result(value)

        except duckdb.Error as e:
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
        except Exception as e:
            logger.warning(f"Rolled back case insert: {type(e).__name__}")
            return Result.failure_result(e)
        finally:
            cursor.close()

    def case_metrics(
        self,
        patient_id: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Result[list[tuple[str, Optional[str]]]]:
        clauses = ["1 = 1"]
        params: list[Any] = []
        if patient_id:
            clauses.append("patient_id = ?")
            params.append(patient_id)
        if date_from:
            clauses.append("encounter_date >= CAST(? AS DATE)")
            params.append(date_from)
        if date_to:
            clauses.append("encounter_date <= CAST(? AS DATE)")
            params.append(date_to)

        try:
            init_result = self._ensure_schema()
            if init_result.is_failure():
                return init_result

            cursor = self._cursor()
            try:
                rows = cursor.execute(
                    f"SELECT status, visit_type FROM encounters WHERE {' AND '.join(clauses)}",
                    params
                ).fetchall()
            finally:
                cursor.close()
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
            cursor = self._cursor()
            try:
                return Result.success_result(cursor.execute(sql, params or []).fetchall())
            finally:
                cursor.close()
        except Exception as e:
            error_msg = f"Query failed: {str(e)}"
            logger.warning(error_msg)
            return Result.failure_result(
                StorageError(error_msg, operation="query"),
                error_type="StorageError"
            )

    def close(self) -> None:
        """Close storage connection and release resources."""
        if self._connection is not None:
            try:
                self._connection.close()
                self._connection = None
                self._initialized = False
                logger.info("Closed DuckDB connection")
            except Exception as e:
                logger.warning(f"Error closing connection: {str(e)}")
