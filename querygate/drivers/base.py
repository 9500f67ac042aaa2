"""Engine driver capability interface."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..errors import (
    DataSourceConnectionError,
    GatewayError,
    QueryExecutionError,
    QueryTimeoutError,
)
from ..models import EngineKind, TableInfo, ViewInfo
from ..sql_validator import dialect_for
from ..utils import redact_error_message

logger = logging.getLogger(__name__)


@dataclass
class RawResult:
    """Result of one statement exactly as the engine returned it."""
    column_names: List[str]
    native_types: List[Optional[str]]
    rows: List[Sequence[Any]]
    returns_rows: bool
    affected_rows: Optional[int] = None


@dataclass
class CatalogScan:
    """Tables and views read from an engine catalog."""
    tables: List[TableInfo] = field(default_factory=list)
    views: List[ViewInfo] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class EngineDriver(ABC):
    """Uniform capabilities over one backend engine.

    A driver is stateless. Pools come from ``create_pool`` and are owned by the
    connection manager; sessions are checked out of them and used by one request
    at a time.
    """

    kind: EngineKind

    @property
    def sql_dialect(self) -> Optional[str]:
        """sqlglot dialect statements for this engine are parsed and rendered in."""
        return dialect_for(self.kind)

    @abstractmethod
    def create_pool(self, config: Dict[str, Any], read_only: bool, pool_size: int, pool_timeout_s: float) -> Any:
        """Build the connection pool of one data source without connecting yet."""

    @abstractmethod
    def checkout(self, pool: Any) -> Any:
        """Check a session out of ``pool``.

        Raises DataSourceConnectionError when the engine is unreachable.
        """

    @abstractmethod
    def checkin(self, handle: Any, invalidate: bool = False) -> None:
        """Return a session to its pool, discarding it when ``invalidate`` is set. Must not raise."""

    @abstractmethod
    def dispose_pool(self, pool: Any) -> None:
        """Close every idle session of ``pool``."""

    @abstractmethod
    def open(self, config: Dict[str, Any], read_only: bool) -> Any:
        """Open a throwaway session outside any pool. Raises DataSourceConnectionError when unreachable."""

    @abstractmethod
    def ping(self, handle: Any) -> bool:
        """Return True if the session is still usable."""

    @abstractmethod
    def execute(
        self,
        handle: Any,
        sql: str,
        parameters: Optional[Any] = None,
        max_rows: Optional[int] = None,
    ) -> RawResult:
        """Run one statement and fetch at most ``max_rows`` rows.

        ``parameters`` maps the ``:name`` binds of ``sql`` to their values.
        Engine errors propagate unchanged; use ``translate_error`` to map them.
        """

    @abstractmethod
    def introspect(self, handle: Any, config: Dict[str, Any], fail_on_error: bool = False) -> CatalogScan:
        """Read tables, views and their columns from the engine catalog.

        Tables that cannot be described are omitted with a warning unless
        ``fail_on_error`` is set.
        """

    @abstractmethod
    def count_tables(self, handle: Any, config: Dict[str, Any]) -> int:
        """Number of user tables visible to the session."""

    @abstractmethod
    def commit(self, handle: Any) -> None:
        """Commit the session's current transaction."""

    @abstractmethod
    def rollback(self, handle: Any) -> None:
        """Discard the session's current transaction."""

    @abstractmethod
    def close(self, handle: Any) -> None:
        """Close a session returned by ``open``. Must not raise."""

    def set_statement_timeout(self, handle: Any, timeout_ms: int) -> None:
        """Ask the engine to abort statements running longer than ``timeout_ms``."""

    def cancel(self, handle: Any) -> bool:
        """Cancel the statement in flight on ``handle`` from another thread.

        Returns False when the engine offers no cancellation.
        """
        return False

    def preflight(self, config: Dict[str, Any]) -> None:
        """Cheap checks of the connection settings before any session is opened."""

    def describe_type(self, type_code: Any) -> Optional[str]:
        """Native type name for a cursor description type code, if the driver knows it."""
        return None

    def is_timeout_error(self, error: Exception) -> bool:
        """Whether an engine error means the statement hit the server-side timeout."""
        return False

    def is_disconnect_error(self, error: Exception) -> bool:
        """Whether an engine error means the session itself is gone."""
        return False

    def translate_error(self, error: Exception, data_source_id: str, elapsed_ms: float) -> GatewayError:
        """Map an engine error onto the gateway taxonomy without leaking credentials."""
        if isinstance(error, GatewayError):
            return error
        message = redact_error_message(str(error).strip().splitlines()[0] if str(error).strip() else type(error).__name__)
        if self.is_timeout_error(error):
            return QueryTimeoutError(
                f"Statement on data source '{data_source_id}' exceeded its timeout after {elapsed_ms:.0f}ms",
                data_source_id,
                elapsed_ms,
            )
        if self.is_disconnect_error(error):
            return DataSourceConnectionError(
                f"Lost connection to data source '{data_source_id}': {message}",
                {"data_source_id": data_source_id, "elapsed_ms": round(elapsed_ms, 2)},
            )
        return QueryExecutionError(
            f"Query failed on data source '{data_source_id}': {message}",
            {"data_source_id": data_source_id, "engine": self.kind.value},
        )
