"""Client-server engine drivers."""

import logging
import math
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote_plus, urlencode

from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError

from ..constants import (
    CONNECT_TIMEOUT_S,
    DEFAULT_CLICKHOUSE_PORT,
    DEFAULT_MSSQL_PORT,
    DEFAULT_MYSQL_PORT,
    DEFAULT_ORACLE_PORT,
    DEFAULT_POSTGRES_PORT,
    DEFAULT_SNOWFLAKE_SCHEMA,
    CLICKHOUSE_SYSTEM_SCHEMAS,
    MSSQL_SYSTEM_SCHEMAS,
    MYSQL_SYSTEM_SCHEMAS,
    ORACLE_SYSTEM_SCHEMAS,
    POSTGRES_SYSTEM_SCHEMAS,
)
from ..errors import DataSourceConnectionError
from ..models import EngineKind
from .sqlalchemy_driver import SQLAlchemyDriver, SQLAlchemyHandle

logger = logging.getLogger(__name__)

APPLICATION_NAME = "querygate"


def _require(config: Dict[str, Any], kind: EngineKind, *keys: str) -> None:
    missing = [key for key in keys if not config.get(key)]
    if missing:
        raise DataSourceConnectionError(
            f"Missing required {kind.value} connection parameters: {', '.join(missing)}",
            {"engine": kind.value},
        )


def _username(config: Dict[str, Any]) -> Optional[str]:
    return config.get("username") or config.get("user")


class PostgreSQLDriver(SQLAlchemyDriver):
    """PostgreSQL through psycopg2."""

    kind = EngineKind.POSTGRESQL
    system_schemas = POSTGRES_SYSTEM_SCHEMAS

    # psycopg2 cursor description type codes (pg_type OIDs)
    TYPE_OIDS = {
        16: "boolean", 17: "bytea", 20: "bigint", 21: "smallint", 23: "integer", 25: "text",
        114: "json", 700: "real", 701: "double precision", 1042: "character", 1043: "character varying",
        1082: "date", 1083: "time", 1114: "timestamp", 1184: "timestamptz", 1186: "interval",
        1266: "timetz", 1700: "numeric", 2950: "uuid", 3802: "jsonb",
        1000: "boolean[]", 1005: "smallint[]", 1007: "integer[]", 1016: "bigint[]", 1009: "text[]",
    }

    def preflight(self, config: Dict[str, Any]) -> None:
        _require(config, self.kind, "host", "database")

    def build_url(self, config: Dict[str, Any]) -> URL:
        return URL.create(
            "postgresql+psycopg2",
            username=_username(config),
            password=config.get("password") or None,
            host=config["host"],
            port=int(config.get("port") or DEFAULT_POSTGRES_PORT),
            database=config["database"],
        )

    def connect_args(self, config: Dict[str, Any]) -> Dict[str, Any]:
        args = {"connect_timeout": CONNECT_TIMEOUT_S, "application_name": APPLICATION_NAME}
        if config.get("sslmode"):
            args["sslmode"] = config["sslmode"]
        return args

    def session_setup(self, read_only: bool) -> List[str]:
        if read_only:
            return ["SET SESSION CHARACTERISTICS AS TRANSACTION READ ONLY"]
        return []

    def timeout_statements(self, timeout_ms: int) -> List[str]:
        return [f"SET statement_timeout = {int(timeout_ms)}"]

    def describe_type(self, type_code: Any) -> Optional[str]:
        return self.TYPE_OIDS.get(type_code)

    def cancel(self, handle: SQLAlchemyHandle) -> bool:
        handle.dbapi_connection.cancel()
        return True

    def is_timeout_error(self, error: Exception) -> bool:
        # 57014 = query_canceled
        return isinstance(error, DBAPIError) and getattr(error.orig, "pgcode", None) == "57014"


class MySQLDriver(SQLAlchemyDriver):
    """MySQL and MariaDB through PyMySQL."""

    kind = EngineKind.MYSQL
    system_schemas = MYSQL_SYSTEM_SCHEMAS

    # pymysql FIELD_TYPE codes; BLOB (252) is shared with TEXT and left to value inference
    FIELD_TYPES = {
        0: "decimal", 1: "tinyint", 2: "smallint", 3: "int", 4: "float", 5: "double",
        7: "timestamp", 8: "bigint", 9: "mediumint", 10: "date", 11: "time", 12: "datetime",
        13: "year", 15: "varchar", 16: "bit", 245: "json", 246: "decimal", 247: "enum",
        248: "set", 253: "varchar", 254: "char",
    }

    def preflight(self, config: Dict[str, Any]) -> None:
        _require(config, self.kind, "host", "database")

    def build_url(self, config: Dict[str, Any]) -> URL:
        return URL.create(
            "mysql+pymysql",
            username=_username(config),
            password=config.get("password") or None,
            host=config["host"],
            port=int(config.get("port") or DEFAULT_MYSQL_PORT),
            database=config["database"],
            query={"charset": config.get("charset", "utf8mb4")},
        )

    def connect_args(self, config: Dict[str, Any]) -> Dict[str, Any]:
        return {"connect_timeout": CONNECT_TIMEOUT_S}

    def introspection_schemas(self, inspector: Any, config: Dict[str, Any]) -> List[Optional[str]]:
        # A MySQL "schema" is a database; scan only the configured one
        if config.get("schemas") or config.get("schema"):
            return super().introspection_schemas(inspector, config)
        return [None]

    def session_setup(self, read_only: bool) -> List[str]:
        if read_only:
            return ["SET SESSION TRANSACTION READ ONLY"]
        return []

    def timeout_statements(self, timeout_ms: int) -> List[str]:
        return [f"SET SESSION max_execution_time = {int(timeout_ms)}"]

    def describe_type(self, type_code: Any) -> Optional[str]:
        return self.FIELD_TYPES.get(type_code)

    def is_timeout_error(self, error: Exception) -> bool:
        # 3024 = ER_QUERY_TIMEOUT
        if not isinstance(error, DBAPIError):
            return False
        args = getattr(error.orig, "args", ())
        return bool(args) and args[0] == 3024


class MSSQLDriver(SQLAlchemyDriver):
    """Microsoft SQL Server through pymssql."""

    kind = EngineKind.MSSQL
    system_schemas = MSSQL_SYSTEM_SCHEMAS

    def preflight(self, config: Dict[str, Any]) -> None:
        _require(config, self.kind, "host", "database")

    def build_url(self, config: Dict[str, Any]) -> URL:
        return URL.create(
            "mssql+pymssql",
            username=_username(config),
            password=config.get("password") or None,
            host=config["host"],
            port=int(config.get("port") or DEFAULT_MSSQL_PORT),
            database=config["database"],
        )

    def connect_args(self, config: Dict[str, Any]) -> Dict[str, Any]:
        return {"login_timeout": CONNECT_TIMEOUT_S, "appname": APPLICATION_NAME}

    def introspection_schemas(self, inspector: Any, config: Dict[str, Any]) -> List[Optional[str]]:
        schemas = super().introspection_schemas(inspector, config)
        # Fixed database roles show up as schemas
        return [name for name in schemas if name is None or not name.startswith("db_")] or [None]

    def timeout_statements(self, timeout_ms: int) -> List[str]:
        # Lock waits are the only per-session bound SQL Server offers
        return [f"SET LOCK_TIMEOUT {int(timeout_ms)}"]


class OracleDriver(SQLAlchemyDriver):
    """Oracle Database 12c+ through python-oracledb (thin mode)."""

    kind = EngineKind.ORACLE
    system_schemas = ORACLE_SYSTEM_SCHEMAS
    ping_sql = "SELECT 1 FROM DUAL"

    def preflight(self, config: Dict[str, Any]) -> None:
        _require(config, self.kind, "host")
        if not (config.get("service_name") or config.get("database") or config.get("sid")):
            raise DataSourceConnectionError(
                "Oracle data source requires 'service_name' (or 'database') or 'sid'",
                {"engine": self.kind.value},
            )

    def build_url(self, config: Dict[str, Any]) -> URL:
        service_name = config.get("service_name") or config.get("database")
        return URL.create(
            "oracle+oracledb",
            username=_username(config),
            password=config.get("password") or None,
            host=config["host"],
            port=int(config.get("port") or DEFAULT_ORACLE_PORT),
            database=config.get("sid") if not service_name else None,
            query={"service_name": service_name} if service_name else {},
        )

    def introspection_schemas(self, inspector: Any, config: Dict[str, Any]) -> List[Optional[str]]:
        # Every Oracle user is a schema; default to the connected user's own
        if config.get("schemas") or config.get("schema"):
            return super().introspection_schemas(inspector, config)
        return [None]

    def set_statement_timeout(self, handle: SQLAlchemyHandle, timeout_ms: int) -> None:
        handle.dbapi_connection.call_timeout = int(timeout_ms)

    def cancel(self, handle: SQLAlchemyHandle) -> bool:
        handle.dbapi_connection.cancel()
        return True

    def is_timeout_error(self, error: Exception) -> bool:
        text = str(getattr(error, "orig", error))
        return "DPI-1067" in text or "ORA-01013" in text


class ClickHouseDriver(SQLAlchemyDriver):
    """ClickHouse through clickhouse-sqlalchemy (HTTP or native protocol)."""

    kind = EngineKind.CLICKHOUSE
    system_schemas = CLICKHOUSE_SYSTEM_SCHEMAS

    def preflight(self, config: Dict[str, Any]) -> None:
        _require(config, self.kind, "host")

    def build_url(self, config: Dict[str, Any]) -> URL:
        protocol = config.get("protocol", "http")
        if protocol == "native":
            scheme = "clickhouse+native"
        elif config.get("secure"):
            scheme = "clickhouse+https"
        else:
            scheme = "clickhouse+http"
        return URL.create(
            scheme,
            username=_username(config) or "default",
            password=config.get("password") or None,
            host=config["host"],
            port=int(config.get("port") or DEFAULT_CLICKHOUSE_PORT),
            database=config.get("database") or "default",
        )

    def introspection_schemas(self, inspector: Any, config: Dict[str, Any]) -> List[Optional[str]]:
        if config.get("schemas") or config.get("schema"):
            return super().introspection_schemas(inspector, config)
        return [None]


class SnowflakeDriver(SQLAlchemyDriver):
    """Snowflake through snowflake-sqlalchemy."""

    kind = EngineKind.SNOWFLAKE

    def preflight(self, config: Dict[str, Any]) -> None:
        _require(config, self.kind, "account", "warehouse", "database")

    def build_url(self, config: Dict[str, Any]) -> Union[str, URL]:
        username = quote_plus(_username(config) or "")
        # URL-encode password to handle special characters
        password = quote_plus(config.get("password") or "")
        schema = config.get("schema") or DEFAULT_SNOWFLAKE_SCHEMA
        query = {"warehouse": config["warehouse"]}
        if config.get("role"):
            query["role"] = config["role"]
        return (
            f"snowflake://{username}:{password}@{config['account']}/"
            f"{config['database']}/{schema}?{urlencode(query)}"
        )

    def connect_args(self, config: Dict[str, Any]) -> Dict[str, Any]:
        return {"application": APPLICATION_NAME, "network_timeout": CONNECT_TIMEOUT_S}

    def introspection_schemas(self, inspector: Any, config: Dict[str, Any]) -> List[Optional[str]]:
        if config.get("schemas"):
            return super().introspection_schemas(inspector, config)
        # The schema in the URL is the session default
        return [None]

    def timeout_statements(self, timeout_ms: int) -> List[str]:
        seconds = max(1, math.ceil(timeout_ms / 1000))
        return [f"ALTER SESSION SET STATEMENT_TIMEOUT_IN_SECONDS = {seconds}"]

    def is_timeout_error(self, error: Exception) -> bool:
        # 000630 = statement reached its timeout
        return "000630" in str(getattr(error, "orig", error))
