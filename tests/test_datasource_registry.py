"""Tests for the in-memory data source registry."""

import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock

from querygate.datasource_registry import DataSourceRegistry
from querygate.errors import DataSourceNotFoundError, InvalidInputError
from querygate.models import EngineKind
from querygate.security import SecureCredentialManager


class TestDataSourceRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = DataSourceRegistry()

    def test_register_and_get(self):
        self.registry.register("sales", "Sales DB", "postgres", {"host": "db", "database": "sales"})
        data_source = self.registry.get("sales")
        self.assertEqual(data_source.engine_kind, EngineKind.POSTGRESQL)
        self.assertEqual(data_source.name, "Sales DB")

    def test_unknown_id(self):
        with self.assertRaises(DataSourceNotFoundError):
            self.registry.get("missing")

    def test_inactive_data_source_is_not_served(self):
        self.registry.register("old", "Old", "sqlite", {"path": "old.db"}, is_active=False)
        with self.assertRaises(DataSourceNotFoundError) as ctx:
            self.registry.get("old")
        self.assertIn("inactive", ctx.exception.message)
        self.assertEqual(self.registry.list(), [])
        self.assertEqual(len(self.registry.list(include_inactive=True)), 1)

    def test_unsupported_engine(self):
        with self.assertRaises(InvalidInputError):
            self.registry.register("x", "X", "dbase", {})

    def test_invalid_schema_name(self):
        with self.assertRaises(InvalidInputError):
            self.registry.register("x", "X", "postgresql", {"schema": "public; drop"})

    def test_config_change_notifies_listeners(self):
        listener = Mock()
        self.registry.add_listener(listener)
        self.registry.register("ds", "DS", "sqlite", {"path": "a.db"})
        listener.assert_not_called()

        self.registry.register("ds", "DS", "sqlite", {"path": "a.db"})
        listener.assert_not_called()

        self.registry.register("ds", "DS", "sqlite", {"path": "b.db"})
        listener.assert_called_once_with("ds")

    def test_deactivate_and_remove_notify(self):
        listener = Mock()
        self.registry.add_listener(listener)
        self.registry.register("ds", "DS", "sqlite", {"path": "a.db"})
        self.registry.deactivate("ds")
        self.registry.remove("ds")
        self.assertEqual(listener.call_count, 2)
        self.assertIsNone(self.registry.find("ds"))

    def test_failing_listener_does_not_break_updates(self):
        self.registry.add_listener(Mock(side_effect=RuntimeError("boom")))
        self.registry.register("ds", "DS", "sqlite", {"path": "a.db"})
        self.registry.register("ds", "DS", "sqlite", {"path": "b.db"})
        self.assertEqual(self.registry.get("ds").connection_config["path"], "b.db")

    def test_to_dict_hides_connection_config(self):
        self.registry.register("ds", "DS", "postgresql", {"host": "db", "password": "pw"})
        self.assertNotIn("connection_config", self.registry.get("ds").to_dict())


class TestRegistryFiles(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "sources.json"

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_load_file(self):
        self.path.write_text(json.dumps({"data_sources": [
            {"id": "a", "name": "A", "engine_kind": "sqlite", "connection_config": {"path": "a.db"}},
            {"id": "b", "type": "pg", "connection_config": {"host": "db"}},
        ]}))
        registry = DataSourceRegistry()
        self.assertEqual(registry.load_file(self.path), 2)
        self.assertEqual(registry.get("b").engine_kind, EngineKind.POSTGRESQL)
        self.assertEqual(registry.get("b").name, "b")

    def test_load_file_requires_ids(self):
        self.path.write_text(json.dumps([{"engine_kind": "sqlite"}]))
        with self.assertRaises(InvalidInputError):
            DataSourceRegistry().load_file(self.path)

    def test_encrypted_config_is_decrypted(self):
        manager = SecureCredentialManager("master", salt_file=Path(self.tmpdir.name) / "salt")
        token = manager.encrypt_config({"password": "pw"})
        self.path.write_text(json.dumps([{
            "id": "wh",
            "engine_kind": "postgresql",
            "connection_config": {"host": "db"},
            "encrypted_config": token,
        }]))
        registry = DataSourceRegistry(manager)
        registry.load_file(self.path)
        self.assertEqual(registry.get("wh").connection_config, {"host": "db", "password": "pw"})

    def test_encrypted_config_without_master_password(self):
        entry = {"id": "wh", "engine_kind": "postgresql", "encrypted_config": "token"}
        with self.assertRaises(InvalidInputError):
            DataSourceRegistry().from_dict(entry)


if __name__ == '__main__':
    unittest.main()
