"""Domain Ports - Abstract Contracts for Case Storage and Master-Data Lookup.

This module defines the Port interfaces (abstract contracts) that Adapters must implement.
Following Hexagonal Architecture, the Domain Core defines what it needs, not how it's provided.

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Storage adapters (DuckDB, PostgreSQL) implement these ports
    - Ordinary outcomes (no match, duplicate key) travel as Result objects;
      backend failures travel as failed Results carrying an error_type
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar, Union

from src.domain.enums import LookupTable

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (ValidationError, GatewayError, etc.)
        error_details: Additional error context (field errors, ids, etc.)

    Example:
        ```python
        result = gateway.lookup(source, {"a1", "b2"})
        if result.is_success():
            names = result.value
        else:
            logger.error(result.error)
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (e.g., "ValidationError", "GatewayError")
            error_details: Additional context (field errors, ids, etc.)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class CaseError(Exception):
    """Base exception for all case pipeline errors."""
    pass


class ValidationError(CaseError):
    """Raised when a case payload fails sanitizing or schema validation.

    Attributes:
        details: One message per violated constraint, each prefixed with the
                 dotted field path (e.g. ``treatments.0.drug_id: Invalid drug ID``)
    """

    def __init__(self, message: str, details: Optional[list[str]] = None):
        super().__init__(message)
        self.details = details or []


class PatientNotFoundError(CaseError):
    """Raised when a case references a patient that does not exist."""

    def __init__(self, message: str, patient_id: Optional[str] = None):
        super().__init__(message)
        self.patient_id = patient_id


class CaseNotFoundError(CaseError):
    """Raised when a case id does not match any stored case."""

    def __init__(self, message: str, case_id: Optional[str] = None):
        super().__init__(message)
        self.case_id = case_id


class DuplicateCaseNumberError(CaseError):
    """Raised when an insert collides with an existing case number.

    Detected through the repository's uniqueness constraint, never pre-checked.
    """

    def __init__(self, message: str, case_no: Optional[str] = None):
        super().__init__(message)
        self.case_no = case_no


class GatewayError(CaseError):
    """Raised when the master-data backend fails (as opposed to reporting no match).

    Attributes:
        source: Description of the lookup source that failed
    """

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class StorageError(CaseError):
    """Raised when a storage backend operation fails.

    Attributes:
        operation: The storage operation that failed (connect, insert, list, ...)
        details: Additional error context
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


# ============================================================================
# Value Objects
# ============================================================================

@dataclass(frozen=True)
class LookupSource:
    """One physical place where display names for ids may be found.

    Attributes:
        table: Backing table
        category: Category filter (only for the shared master_data table)
    """

    table: LookupTable
    category: Optional[str] = None

    def describe(self) -> str:
        if self.category:
            return f"{self.table.value}[{self.category}]"
        return self.table.value


@dataclass(frozen=True)
class CaseQuery:
    """Validated, clamped listing parameters for the case repository.

    ``statuses`` empty means the default soft-delete filter (exclude cancelled).
    ``search`` is matched against the case number only, after escaping.
    """

    page: int = 1
    limit: int = 50
    search: str = ""
    sort_by: str = "created_at"
    sort_order: str = "desc"
    statuses: tuple[str, ...] = ()
    patient_id: Optional[str] = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class CasePage:
    """A page of raw case records plus the total matching count."""

    records: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0


# ============================================================================
# Ports
# ============================================================================

class MasterDataPort(ABC):
    """Abstract contract for the Master Data Gateway.

    Given one lookup source and a set of ids, return the subset of ids that
    exist together with their display names. Implementations must issue a
    single batched query per call.
    """

    @abstractmethod
    def lookup(self, source: LookupSource, ids: Iterable[str]) -> Result[dict[str, str]]:
        """Resolve ids against one lookup source.

        Parameters:
            source: Table (and category, for master_data) to search
            ids: Distinct identifiers to resolve

        Returns:
            Result[dict[str, str]]: Success with an id -> name map containing
            only the ids that were found (possibly empty). Failure only when
            the backend itself errored.
        """
        pass


class PatientDirectoryPort(ABC):
    """Abstract contract for checking patient existence."""

    @abstractmethod
    def patient_exists(self, patient_id: str) -> Result[bool]:
        """Check whether a patient row exists for ``patient_id``."""
        pass


class CaseRepositoryPort(ABC):
    """Abstract contract for the Encounter Repository.

    Key Principles:
        - Persisted records always hold raw identifiers/literals only
        - ``case_no`` uniqueness is enforced atomically by the store
        - Cancelled cases are excluded from listings unless filtered for
    """

    @abstractmethod
    def initialize_schema(self) -> Result[None]:
        """Create tables and constraints if they do not exist."""
        pass

    @abstractmethod
    def list_cases(self, query: CaseQuery) -> Result[CasePage]:
        """Return one page of cases matching ``query`` plus the total count."""
        pass

    @abstractmethod
    def get_case(self, case_id: str) -> Result[Optional[dict[str, Any]]]:
        """Return one case by primary id, or a success holding None."""
        pass

    @abstractmethod
    def insert_case(
        self,
        record: dict[str, Any],
        on_persisted: Optional[Callable[[dict[str, Any]], Any]] = None,
    ) -> Result[Any]:
        """Insert a validated case.

        Parameters:
            record: Output of ``CaseRecord.to_storage()``
            on_persisted: Optional hook called with the persisted row before
                commit; its return value becomes the Result value. If it
                raises, the insert is rolled back and the failure is returned
                with the exception's class name as ``error_type``.

        Returns:
            Result: The persisted record (or hook output), or a failure with
            ``error_type="DuplicateCaseNumberError"`` on a case number
            collision, or ``error_type="StorageError"`` on backend failure.
        """
        pass

    @abstractmethod
    def case_metrics(
        self,
        patient_id: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> Result[list[tuple[str, Optional[str]]]]:
        """Return (status, visit_type) pairs for aggregate reporting."""
        pass

    def close(self) -> None:
        """Release backend resources (optional)."""
        return None
