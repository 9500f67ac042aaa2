"""Tests for the SQLAlchemy engine drivers."""

import tempfile
import unittest
from pathlib import Path
from typing import Any, Dict

from sqlalchemy.exc import DBAPIError
from sqlalchemy.pool import QueuePool

from querygate.drivers import DriverRegistry, PostgreSQLDriver, SQLAlchemyDriver, SQLiteDriver
from querygate.errors import DataSourceConnectionError
from querygate.models import EngineKind
from test_query_executor import create_sample_database


class TestDriverInterface(unittest.TestCase):

    def test_driver_without_url_cannot_be_built(self):
        class NoUrlDriver(SQLAlchemyDriver):
            kind = EngineKind.SQLITE

        with self.assertRaises(TypeError):
            NoUrlDriver()

    def test_driver_with_url_can_be_built(self):
        class MemoryDriver(SQLAlchemyDriver):
            kind = EngineKind.SQLITE

            def build_url(self, config: Dict[str, Any]) -> str:
                return "sqlite://"

        self.assertEqual(MemoryDriver().sql_dialect, "sqlite")

    def test_every_registered_driver_has_a_dialect(self):
        drivers = DriverRegistry()
        for kind in EngineKind:
            self.assertIsNotNone(drivers.get(kind).sql_dialect, kind)
        self.assertEqual(drivers.get(EngineKind.MSSQL).sql_dialect, "tsql")

    def test_postgres_url(self):
        url = PostgreSQLDriver().build_url({"host": "db.internal", "database": "sales", "user": "reader"})
        self.assertEqual(url.drivername, "postgresql+psycopg2")
        self.assertEqual(url.host, "db.internal")
        self.assertEqual(url.port, 5432)
        self.assertEqual(url.username, "reader")

    def test_postgres_preflight_names_missing_settings(self):
        with self.assertRaises(DataSourceConnectionError) as ctx:
            PostgreSQLDriver().create_pool({"host": "db.internal"}, True, 2, 1.0)
        self.assertIn("database", ctx.exception.message)


class TestSQLitePool(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        create_sample_database(Path(self.tmpdir.name) / "shop.db", users=3)
        self.driver = SQLiteDriver(self.tmpdir.name)
        self.config = {"path": "shop.db"}

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_read_only_pool_refuses_writes(self):
        engine = self.driver.create_pool(self.config, True, 2, 1.0)
        try:
            self.assertIsInstance(engine.pool, QueuePool)
            handle = self.driver.checkout(engine)
            raw = self.driver.execute(handle, "PRAGMA query_only")
            self.assertEqual(raw.rows, [(1,)])
            with self.assertRaises(DBAPIError):
                self.driver.execute(handle, "DELETE FROM users")
            self.driver.checkin(handle, invalidate=True)
            self.assertEqual(engine.pool.checkedout(), 0)
        finally:
            self.driver.dispose_pool(engine)

    def test_named_binds_run_through_text(self):
        engine = self.driver.create_pool(self.config, True, 1, 1.0)
        try:
            handle = self.driver.checkout(engine)
            raw = self.driver.execute(handle, "SELECT name FROM users WHERE id = :p1", {"p1": 2})
            self.assertEqual(raw.rows, [("user2",)])
            self.driver.checkin(handle)
            self.assertEqual(engine.pool.checkedin(), 1)
        finally:
            self.driver.dispose_pool(engine)

    def test_missing_file_fails_before_connecting(self):
        with self.assertRaises(DataSourceConnectionError):
            self.driver.create_pool({"path": "missing.db"}, True, 1, 1.0)


if __name__ == '__main__':
    unittest.main()
