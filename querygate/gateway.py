"""Composition root of the SQL gateway.

Builds the registry, drivers, connection manager, schema introspector and query
executor once and hands them to each other explicitly.
"""

import logging
from typing import Any, Dict, Optional

from .audit import AuditLogger, LoggingAuditLogger
from .config import GatewayConfig
from .connection_manager import ConnectionManager
from .datasource_registry import DataSourceRegistry
from .drivers import DriverRegistry
from .models import ExecutionRequest, ExecutionResult, SchemaSnapshot, ValidationResult
from .query_executor import QueryExecutor
from .schema_introspector import SchemaIntrospector
from .security import SecureCredentialManager
from .sql_validator import validate

logger = logging.getLogger(__name__)


class SQLGateway:
    """Owns every stateful gateway component."""

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        registry: Optional[DataSourceRegistry] = None,
        drivers: Optional[DriverRegistry] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.config = config or GatewayConfig()
        self.registry = registry or DataSourceRegistry(SecureCredentialManager())
        self.drivers = drivers or DriverRegistry(self.config.data_dir)
        self.audit_logger = audit_logger or LoggingAuditLogger()

        self.connections = ConnectionManager(
            self.drivers,
            pool_size=self.config.pool_size,
            acquire_timeout_s=self.config.acquire_timeout_s,
            idle_timeout_s=self.config.idle_timeout_s,
            sweep_interval_s=self.config.sweep_interval_s,
            read_only=self.config.read_only,
        )
        self.introspector = SchemaIntrospector(
            self.registry,
            self.connections,
            ttl_s=self.config.schema_ttl_s,
            acquire_timeout_s=self.config.acquire_timeout_s,
            refresh_timeout_s=self.config.query_timeout_ms / 1000.0,
            partial_failure=self.config.schema_partial_failure,
        )
        self.executor = QueryExecutor(
            self.registry,
            self.connections,
            config=self.config,
            audit_logger=self.audit_logger,
        )
        self.registry.add_listener(self._on_data_source_changed)

    def _on_data_source_changed(self, data_source_id: str) -> None:
        self.connections.invalidate_all(data_source_id)
        self.introspector.invalidate(data_source_id)

    def start(self) -> None:
        """Load configured data sources and start background maintenance."""
        if self.config.datasources_file:
            self.registry.load_file(self.config.datasources_file)
        self.connections.start()
        logger.info(
            f"SQL gateway started (read_only={self.config.read_only}, "
            f"{len(self.registry.list())} active data source(s))"
        )

    def shutdown(self) -> None:
        self.connections.shutdown()
        logger.info("SQL gateway stopped")

    # -- operations --------------------------------------------------------------

    def validate(self, sql: str, data_source_id: Optional[str] = None) -> ValidationResult:
        """Validate SQL, in the dialect of a data source when one is given."""
        dialect = None
        if data_source_id:
            dialect = self.drivers.get(self.registry.get(data_source_id).engine_kind).sql_dialect
        return validate(sql, dialect)

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        return self.executor.execute(request)

    def get_schema(self, data_source_id: str, force_refresh: bool = False) -> SchemaSnapshot:
        return self.introspector.get_schema(data_source_id, force_refresh)

    def test_data_source(self, data_source_id: str) -> Dict[str, Any]:
        return self.connections.test_connection(self.registry.get(data_source_id))

    def status(self) -> Dict[str, Any]:
        return {
            "read_only": self.config.read_only,
            "default_limit": self.config.default_limit,
            "max_limit": self.config.max_limit,
            "query_timeout_ms": self.config.query_timeout_ms,
            "data_sources": len(self.registry.list()),
            "active_data_sources": self.connections.active_data_sources(),
            "pools": self.connections.stats(),
            "cached_schemas": self.introspector.cached_data_sources(),
            "engines": self.drivers.kinds(),
        }
