"""In-memory engine driver used by pool, executor and cache tests.

It is a real SQLAlchemy driver over private in-memory SQLite connections, so
pooling goes through an actual ``QueuePool``; execution and introspection are
scripted through attributes.
"""

import sqlite3
import threading
import time
from typing import Any, Dict, List, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError

from querygate.drivers import CatalogScan, DriverRegistry, RawResult
from querygate.drivers.sqlalchemy_driver import SQLAlchemyDriver, SQLAlchemyHandle
from querygate.models import ColumnInfo, DataSource, EngineKind, TableInfo


class FakeDriver(SQLAlchemyDriver):
    """Records every connection and statement; behaviour is switched through attributes."""

    kind = EngineKind.SQLITE

    def __init__(self):
        self._lock = threading.Lock()
        self.opened: List[sqlite3.Connection] = []
        self.closed: List[sqlite3.Connection] = []
        # DBAPI connections that fail their checkout health check
        self.stale: List[sqlite3.Connection] = []
        self.open_error: Optional[Exception] = None
        self.executed: List[str] = []
        # SQL substring -> seconds to sleep, or an Event to wait for
        self.holds: Dict[str, Any] = {}
        self.commits = 0
        self.introspect_calls = 0
        self.introspect_delay_s = 0.0
        self.introspect_error: Optional[Exception] = None
        self.fail_on_error_seen: List[bool] = []
        self.tables = [
            TableInfo(
                name="users",
                columns=[ColumnInfo(name="id", type="integer", nullable=False, is_primary_key=True)],
                primary_keys=["id"],
            )
        ]

    def build_url(self, config: Dict[str, Any]) -> str:
        return "sqlite://"

    def _connect(self) -> sqlite3.Connection:
        if self.open_error is not None:
            raise self.open_error
        connection = sqlite3.connect(":memory:", check_same_thread=False)
        with self._lock:
            self.opened.append(connection)
        return connection

    def engine_options(self, config: Dict[str, Any], read_only: bool) -> Dict[str, Any]:
        return {"creator": self._connect}

    def configure_engine(self, engine: Engine, read_only: bool) -> None:
        super().configure_engine(engine, read_only)

        @event.listens_for(engine, "close")
        def on_close(dbapi_connection, connection_record):
            with self._lock:
                self.closed.append(dbapi_connection)

        @event.listens_for(engine, "checkout")
        def on_checkout(dbapi_connection, connection_record, connection_proxy):
            if any(dbapi_connection is stale for stale in self.stale):
                raise DisconnectionError("server closed the connection")

    def execute(self, handle: SQLAlchemyHandle, sql: str, parameters=None, max_rows=None) -> RawResult:
        with self._lock:
            self.executed.append(sql)
        for marker, hold in self.holds.items():
            if marker in sql:
                if isinstance(hold, threading.Event):
                    hold.wait(5)
                else:
                    time.sleep(hold)
        return RawResult(["one"], ["INTEGER"], [(1,)], returns_rows=True)

    def commit(self, handle: SQLAlchemyHandle) -> None:
        with self._lock:
            self.commits += 1
        super().commit(handle)

    def introspect(self, handle, config, fail_on_error=False) -> CatalogScan:
        with self._lock:
            self.introspect_calls += 1
            self.fail_on_error_seen.append(fail_on_error)
        if self.introspect_delay_s:
            time.sleep(self.introspect_delay_s)
        if self.introspect_error is not None:
            raise self.introspect_error
        return CatalogScan(tables=list(self.tables))

    def count_tables(self, handle, config) -> int:
        return len(self.tables)


def fake_registry(driver: FakeDriver) -> DriverRegistry:
    drivers = DriverRegistry(register_defaults=False)
    drivers.register(EngineKind.SQLITE, driver)
    return drivers


def make_data_source(data_source_id: str = "ds1", path: str = "a.db") -> DataSource:
    return DataSource(
        id=data_source_id,
        name=data_source_id.upper(),
        engine_kind=EngineKind.SQLITE,
        connection_config={"path": path},
    )
