"""Engine drivers, one per supported backend, selected by engine kind."""

import logging
from typing import Dict, List

from ..constants import DEFAULT_DATA_DIR
from ..errors import DataSourceConnectionError
from ..models import EngineKind
from .base import CatalogScan, EngineDriver, RawResult
from .client_server import (
    ClickHouseDriver,
    MSSQLDriver,
    MySQLDriver,
    OracleDriver,
    PostgreSQLDriver,
    SnowflakeDriver,
)
from .embedded import SQLiteDriver
from .sqlalchemy_driver import SQLAlchemyDriver, SQLAlchemyHandle

logger = logging.getLogger(__name__)


class DriverRegistry:
    """Maps engine kinds to driver instances; the single dispatch point per data source."""

    def __init__(self, data_dir: str = DEFAULT_DATA_DIR, register_defaults: bool = True):
        self._drivers: Dict[EngineKind, EngineDriver] = {}
        if register_defaults:
            self.register(EngineKind.SQLITE, SQLiteDriver(data_dir))
            self.register(EngineKind.POSTGRESQL, PostgreSQLDriver())
            self.register(EngineKind.MYSQL, MySQLDriver())
            self.register(EngineKind.MSSQL, MSSQLDriver())
            self.register(EngineKind.ORACLE, OracleDriver())
            self.register(EngineKind.CLICKHOUSE, ClickHouseDriver())
            self.register(EngineKind.SNOWFLAKE, SnowflakeDriver())

    def register(self, kind: EngineKind, driver: EngineDriver) -> None:
        self._drivers[kind] = driver

    def get(self, kind: EngineKind) -> EngineDriver:
        driver = self._drivers.get(kind)
        if driver is None:
            raise DataSourceConnectionError(
                f"No driver registered for engine kind '{kind.value}'", {"engine": kind.value}
            )
        return driver

    def kinds(self) -> List[str]:
        return [kind.value for kind in self._drivers]


__all__ = [
    "CatalogScan",
    "ClickHouseDriver",
    "DriverRegistry",
    "EngineDriver",
    "MSSQLDriver",
    "MySQLDriver",
    "OracleDriver",
    "PostgreSQLDriver",
    "RawResult",
    "SQLAlchemyDriver",
    "SQLAlchemyHandle",
    "SQLiteDriver",
    "SnowflakeDriver",
]
