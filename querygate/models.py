"""Data model of the SQL gateway."""

import hashlib
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class EngineKind(Enum):
    """Supported backend engines."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    MSSQL = "mssql"
    ORACLE = "oracle"
    CLICKHOUSE = "clickhouse"
    SNOWFLAKE = "snowflake"

    @classmethod
    def from_value(cls, value: Any) -> "EngineKind":
        """Parse an engine kind, accepting the common client library aliases."""
        if isinstance(value, EngineKind):
            return value
        normalized = str(value or "").strip().lower()
        aliases = {
            "sqlite3": "sqlite",
            "pg": "postgresql",
            "postgres": "postgresql",
            "oracledb": "oracle",
            "sqlserver": "mssql",
        }
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            supported = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Unsupported engine kind '{value}'. Use one of: {supported}") from None


@dataclass
class DataSource:
    """A registered external database."""
    id: str
    name: str
    engine_kind: EngineKind
    connection_config: Dict[str, Any]
    is_active: bool = True

    def fingerprint(self) -> str:
        """Identify the current connection settings; changes whenever the config changes."""
        canonical = json.dumps(
            {"engine_kind": self.engine_kind.value, "config": self.connection_config},
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(canonical.encode()).hexdigest()[:16]

    def to_dict(self) -> Dict[str, Any]:
        """Describe the data source without its connection settings."""
        return {
            "id": self.id,
            "name": self.name,
            "engine_kind": self.engine_kind.value,
            "is_active": self.is_active,
        }


@dataclass
class ValidationIssue:
    """A fatal validation error, positioned where the parser gave up (1-based)."""
    message: str
    line: Optional[int] = None
    column: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": self.message}
        if self.line is not None:
            payload["line"] = self.line
        if self.column is not None:
            payload["column"] = self.column
        return payload


@dataclass
class ValidationWarning:
    """A non-fatal lint finding."""
    message: str
    category: str = "performance"  # performance | security | style

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "category": self.category}


@dataclass
class ValidationResult:
    """Outcome of validating one SQL text."""
    is_valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)
    is_read_only: bool = False
    parameters: List[str] = field(default_factory=list)
    statement_type: Optional[str] = None
    tables: List[str] = field(default_factory=list)
    formatted_sql: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [error.to_dict() for error in self.errors],
            "warnings": [warning.to_dict() for warning in self.warnings],
            "is_read_only": self.is_read_only,
            "parameters": list(self.parameters),
            "statement_type": self.statement_type,
            "tables": list(self.tables),
            "formatted_sql": self.formatted_sql,
        }


@dataclass
class ExecutionRequest:
    """A request to run SQL against a data source."""
    sql: str
    data_source_id: str
    limit: Optional[int] = None
    timeout_ms: Optional[int] = None
    offset: int = 0
    parameters: Optional[Any] = None  # list for positional, dict for named placeholders
    actor: str = "anonymous"


@dataclass
class ColumnMeta:
    """A result column with its common type."""
    name: str
    type: str
    native_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type, "native_type": self.native_type}


@dataclass
class ExecutionResult:
    """Normalized result set of one execution."""
    columns: List[ColumnMeta]
    rows: List[Dict[str, Any]]
    row_count: int
    truncated: bool
    execution_time_ms: float
    effective_limit: int
    affected_rows: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": [column.to_dict() for column in self.columns],
            "rows": self.rows,
            "row_count": self.row_count,
            "truncated": self.truncated,
            "execution_time_ms": self.execution_time_ms,
            "effective_limit": self.effective_limit,
            "affected_rows": self.affected_rows,
            "warnings": list(self.warnings),
        }


@dataclass
class ColumnInfo:
    """Information about a table or view column."""
    name: str
    type: str
    nullable: bool
    native_type: Optional[str] = None
    default: Optional[str] = None
    is_primary_key: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "nullable": self.nullable,
            "native_type": self.native_type,
            "default": self.default,
            "is_primary_key": self.is_primary_key,
        }


@dataclass
class TableInfo:
    """Information about a database table."""
    name: str
    columns: List[ColumnInfo]
    schema: Optional[str] = None
    primary_keys: List[str] = field(default_factory=list)
    foreign_keys: List[Dict[str, Any]] = field(default_factory=list)
    indexes: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "schema": self.schema,
            "columns": [column.to_dict() for column in self.columns],
            "primary_keys": list(self.primary_keys),
            "foreign_keys": list(self.foreign_keys),
            "indexes": list(self.indexes),
        }


@dataclass
class ViewInfo:
    """Information about a database view."""
    name: str
    columns: List[ColumnInfo]
    schema: Optional[str] = None
    definition: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "schema": self.schema,
            "columns": [column.to_dict() for column in self.columns],
            "definition": self.definition,
        }


def _isoformat(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


@dataclass
class SchemaSnapshot:
    """Cached catalog metadata of one data source. Replaced whole, never patched."""
    data_source_id: str
    tables: List[TableInfo]
    views: List[ViewInfo]
    fetched_at: float
    ttl_expires_at: float
    config_fingerprint: str
    warnings: List[str] = field(default_factory=list)

    def is_expired(self, now: float) -> bool:
        return now > self.ttl_expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data_source_id": self.data_source_id,
            "tables": [table.to_dict() for table in self.tables],
            "views": [view.to_dict() for view in self.views],
            "fetched_at": _isoformat(self.fetched_at),
            "ttl_expires_at": _isoformat(self.ttl_expires_at),
            "warnings": list(self.warnings),
        }


class ConnectionState(Enum):
    """Lifecycle states of a pooled connection."""
    IDLE = "idle"
    IN_USE = "in_use"
    INVALID = "invalid"
    CLOSED = "closed"


@dataclass(eq=False)
class PooledConnection:
    """A live driver handle owned exclusively by the connection manager."""
    data_source_id: str
    config_fingerprint: str
    handle: Any
    driver: Any
    state: ConnectionState
    created_at: float
    last_used_at: float
    pool: Any = field(default=None, repr=False)

    def mark_invalid(self) -> None:
        """Taint the connection so that release closes it instead of pooling it."""
        if self.state != ConnectionState.CLOSED:
            self.state = ConnectionState.INVALID

    @property
    def is_valid(self) -> bool:
        return self.state in (ConnectionState.IDLE, ConnectionState.IN_USE)


@dataclass
class AuditRecord:
    """One fire-and-forget audit entry."""
    actor: str
    action: str
    data_source_id: Optional[str]
    sql_hash: Optional[str]
    is_read_only: Optional[bool]
    duration_ms: float
    outcome: str  # success | failure
    error_code: Optional[str] = None
    row_count: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actor": self.actor,
            "action": self.action,
            "data_source_id": self.data_source_id,
            "sql_hash": self.sql_hash,
            "is_read_only": self.is_read_only,
            "duration_ms": self.duration_ms,
            "outcome": self.outcome,
            "error_code": self.error_code,
            "row_count": self.row_count,
            "timestamp": _isoformat(self.timestamp),
        }
