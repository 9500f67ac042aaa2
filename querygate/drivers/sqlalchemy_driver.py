"""Engine drivers built on SQLAlchemy Core connections."""

import logging
from abc import abstractmethod
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolExhaustedError
from sqlalchemy.pool import NullPool, QueuePool

from ..constants import POOL_RECYCLE_S
from ..errors import DataSourceConnectionError
from ..models import ColumnInfo, TableInfo, ViewInfo
from ..normalization import normalize_type_name
from ..utils import redact_error_message, sanitize_for_logging
from .base import CatalogScan, EngineDriver, RawResult

logger = logging.getLogger(__name__)


@dataclass
class SQLAlchemyHandle:
    """One session checked out of an engine.

    ``engine`` is set only for throwaway sessions from ``open``, which own a
    private ``NullPool`` engine that is disposed together with the session.
    """
    connection: Connection
    engine: Optional[Engine] = None

    @property
    def dbapi_connection(self) -> Any:
        return self.connection.connection.dbapi_connection


def _type_name(sa_type: Any) -> str:
    try:
        return str(sa_type)
    except SQLAlchemyError:
        # NullType and some dialect types cannot be compiled
        return type(sa_type).__name__.upper()


def _prepare_session(statements: List[str], dbapi_connection: Any, connection_record: Any) -> None:
    """Pool ``connect`` listener: run the session setup on every new DBAPI connection."""
    cursor = dbapi_connection.cursor()
    try:
        for statement in statements:
            cursor.execute(statement)
    finally:
        cursor.close()
    dbapi_connection.commit()


class SQLAlchemyDriver(EngineDriver):
    """Shared SQLAlchemy implementation; subclasses describe their dialect."""

    ping_sql = "SELECT 1"
    system_schemas: List[str] = []

    @abstractmethod
    def build_url(self, config: Dict[str, Any]) -> Union[str, URL]:
        """SQLAlchemy URL of a data source."""

    def connect_args(self, config: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    def engine_options(self, config: Dict[str, Any], read_only: bool) -> Dict[str, Any]:
        return {}

    def session_setup(self, read_only: bool) -> List[str]:
        """Statements run once per new session."""
        return []

    def timeout_statements(self, timeout_ms: int) -> List[str]:
        """Statements that set the per-statement server-side timeout."""
        return []

    def introspection_schemas(self, inspector: Any, config: Dict[str, Any]) -> List[Optional[str]]:
        """Schemas to scan; ``None`` means the session's default schema."""
        configured = config.get("schemas")
        if configured:
            return list(configured)
        if config.get("schema"):
            return [config["schema"]]
        if not self.system_schemas:
            return [None]
        default = inspector.default_schema_name
        schemas = [
            name for name in inspector.get_schema_names()
            if name not in self.system_schemas and not name.startswith("pg_")
        ]
        # Report the default schema without a prefix
        return [None if name == default else name for name in schemas] or [None]

    # -- lifecycle ---------------------------------------------------------------

    def _build_engine(self, config: Dict[str, Any], read_only: bool, **pool_options: Any) -> Engine:
        engine = create_engine(
            self.build_url(config),
            connect_args=self.connect_args(config),
            echo=False,
            **pool_options,
            **self.engine_options(config, read_only),
        )
        self.configure_engine(engine, read_only)
        return engine

    def configure_engine(self, engine: Engine, read_only: bool) -> None:
        """Attach pool event listeners; by default the per-session setup statements."""
        statements = self.session_setup(read_only)
        if statements:
            event.listen(engine, "connect", partial(_prepare_session, statements))

    def create_pool(self, config: Dict[str, Any], read_only: bool, pool_size: int,
                    pool_timeout_s: float) -> Engine:
        self.preflight(config)
        logger.debug(f"Creating {self.kind.value} pool of {pool_size} with {sanitize_for_logging(config)}")
        return self._build_engine(
            config,
            read_only,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=pool_timeout_s,
            pool_pre_ping=True,
            pool_recycle=POOL_RECYCLE_S,
        )

    def checkout(self, pool: Engine) -> SQLAlchemyHandle:
        """Check a connection out of the engine's pool.

        ``sqlalchemy.exc.TimeoutError`` (pool exhausted) propagates unchanged.
        """
        try:
            return SQLAlchemyHandle(connection=pool.connect())
        except PoolExhaustedError:
            raise
        except SQLAlchemyError as e:
            raise DataSourceConnectionError(
                f"Failed to connect to {self.kind.value} database: {redact_error_message(str(e.orig if isinstance(e, DBAPIError) else e))}",
                {"engine": self.kind.value},
            ) from None

    def checkin(self, handle: SQLAlchemyHandle, invalidate: bool = False) -> None:
        try:
            if invalidate:
                handle.connection.invalidate()
            handle.connection.close()
        except SQLAlchemyError as e:
            logger.debug(f"Ignoring error while returning {self.kind.value} session: {e}")

    def dispose_pool(self, pool: Engine) -> None:
        pool.dispose()

    def open(self, config: Dict[str, Any], read_only: bool) -> SQLAlchemyHandle:
        self.preflight(config)
        logger.debug(f"Opening {self.kind.value} session with {sanitize_for_logging(config)}")
        engine = self._build_engine(config, read_only, poolclass=NullPool)
        try:
            handle = self.checkout(engine)
        except Exception:
            engine.dispose()
            raise
        handle.engine = engine
        return handle

    def ping(self, handle: SQLAlchemyHandle) -> bool:
        try:
            handle.connection.exec_driver_sql(self.ping_sql).fetchall()
            handle.connection.rollback()
            return True
        except SQLAlchemyError as e:
            logger.warning(f"{self.kind.value} connection health check failed: {redact_error_message(str(e))}")
            return False

    def commit(self, handle: SQLAlchemyHandle) -> None:
        handle.connection.commit()

    def rollback(self, handle: SQLAlchemyHandle) -> None:
        handle.connection.rollback()

    def close(self, handle: SQLAlchemyHandle) -> None:
        self.checkin(handle)
        if handle.engine is not None:
            handle.engine.dispose()

    # -- execution ---------------------------------------------------------------

    def set_statement_timeout(self, handle: SQLAlchemyHandle, timeout_ms: int) -> None:
        for statement in self.timeout_statements(timeout_ms):
            handle.connection.exec_driver_sql(statement)

    def execute(
        self,
        handle: SQLAlchemyHandle,
        sql: str,
        parameters: Optional[Any] = None,
        max_rows: Optional[int] = None,
    ) -> RawResult:
        if parameters:
            # text() converts the :name binds to the DBAPI paramstyle
            result = handle.connection.execute(text(sql), parameters)
        else:
            result = handle.connection.exec_driver_sql(sql)

        try:
            if not result.returns_rows:
                affected = result.rowcount
                return RawResult([], [], [], returns_rows=False,
                                 affected_rows=affected if affected is not None and affected >= 0 else None)

            description = result.cursor.description or []
            native_types = [self.describe_type(entry[1]) for entry in description]
            column_names = list(result.keys())
            if max_rows is None:
                raw_rows = result.fetchall()
            else:
                raw_rows = result.fetchmany(max_rows)
            return RawResult(
                column_names=column_names,
                native_types=native_types,
                rows=[tuple(row) for row in raw_rows],
                returns_rows=True,
            )
        finally:
            result.close()

    def is_disconnect_error(self, error: Exception) -> bool:
        return isinstance(error, DBAPIError) and bool(error.connection_invalidated)

    # -- catalog -----------------------------------------------------------------

    def _columns(self, raw_columns: List[Dict[str, Any]], primary_keys: List[str]) -> List[ColumnInfo]:
        columns = []
        pk_upper = [pk.upper() for pk in primary_keys]
        for raw in raw_columns:
            native = _type_name(raw["type"])
            default = raw.get("default")
            columns.append(ColumnInfo(
                name=raw["name"],
                type=normalize_type_name(native),
                nullable=bool(raw.get("nullable", True)),
                native_type=native,
                default=str(default) if default is not None else None,
                is_primary_key=raw["name"].upper() in pk_upper,
            ))
        return columns

    def _describe_table(self, inspector: Any, name: str, schema: Optional[str]) -> TableInfo:
        table_pk = inspector.get_pk_constraint(name, schema=schema)
        primary_keys = table_pk.get("constrained_columns", []) if table_pk else []
        columns = self._columns(inspector.get_columns(name, schema=schema), primary_keys)

        foreign_keys = []
        try:
            for fk in inspector.get_foreign_keys(name, schema=schema):
                referred = fk.get("referred_columns", [])
                for index, column in enumerate(fk.get("constrained_columns", [])):
                    foreign_keys.append({
                        "column": column,
                        "referenced_table": fk.get("referred_table"),
                        "referenced_column": referred[index] if index < len(referred) else None,
                        "referenced_schema": fk.get("referred_schema"),
                    })
        except NotImplementedError:
            logger.debug(f"{self.kind.value} dialect does not report foreign keys")

        indexes = []
        try:
            for index in inspector.get_indexes(name, schema=schema):
                indexes.append({
                    "name": index.get("name"),
                    "columns": [column for column in index.get("column_names", []) if column],
                    "unique": bool(index.get("unique", False)),
                })
        except NotImplementedError:
            logger.debug(f"{self.kind.value} dialect does not report indexes")

        return TableInfo(
            name=name,
            schema=schema,
            columns=columns,
            primary_keys=list(primary_keys),
            foreign_keys=foreign_keys,
            indexes=indexes,
        )

    def _describe_view(self, inspector: Any, name: str, schema: Optional[str]) -> ViewInfo:
        columns = self._columns(inspector.get_columns(name, schema=schema), [])
        try:
            definition = inspector.get_view_definition(name, schema=schema)
        except (NotImplementedError, SQLAlchemyError):
            definition = None
        return ViewInfo(name=name, schema=schema, columns=columns,
                        definition=str(definition) if definition else None)

    def introspect(self, handle: SQLAlchemyHandle, config: Dict[str, Any], fail_on_error: bool = False) -> CatalogScan:
        inspector = inspect(handle.connection)
        scan = CatalogScan()
        for schema in self.introspection_schemas(inspector, config):
            table_names = inspector.get_table_names(schema=schema)
            try:
                view_names = inspector.get_view_names(schema=schema)
            except NotImplementedError:
                view_names = []

            for name in table_names:
                qualified = f"{schema}.{name}" if schema else name
                try:
                    scan.tables.append(self._describe_table(inspector, name, schema))
                except SQLAlchemyError as e:
                    if fail_on_error:
                        raise
                    logger.warning(f"Skipping table {qualified}: {redact_error_message(str(e))}")
                    scan.warnings.append(f"Table '{qualified}' omitted: {redact_error_message(str(e)).splitlines()[0]}")

            for name in view_names:
                qualified = f"{schema}.{name}" if schema else name
                try:
                    scan.views.append(self._describe_view(inspector, name, schema))
                except SQLAlchemyError as e:
                    if fail_on_error:
                        raise
                    logger.warning(f"Skipping view {qualified}: {redact_error_message(str(e))}")
                    scan.warnings.append(f"View '{qualified}' omitted: {redact_error_message(str(e)).splitlines()[0]}")
        return scan

    def count_tables(self, handle: SQLAlchemyHandle, config: Dict[str, Any]) -> int:
        inspector = inspect(handle.connection)
        return sum(
            len(inspector.get_table_names(schema=schema))
            for schema in self.introspection_schemas(inspector, config)
        )
