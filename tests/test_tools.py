"""Tests for the tool implementations against a gateway on a SQLite file."""

import tempfile
import unittest
from pathlib import Path

from test_query_executor import create_sample_database
import querygate.tools as tools
from querygate.audit import InMemoryAuditLogger
from querygate.config import GatewayConfig, ServerConfig
from querygate.datasource_registry import DataSourceRegistry
from querygate.gateway import SQLGateway


class GatewayTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        create_sample_database(Path(self.tmpdir.name) / "shop.db", users=20)
        self.registry = DataSourceRegistry()
        self.registry.register("shop", "Shop", "sqlite", {"path": "shop.db"})
        self.audit = InMemoryAuditLogger()
        self.gateway = SQLGateway(
            GatewayConfig(data_dir=self.tmpdir.name, default_limit=10),
            self.registry,
            audit_logger=self.audit,
        )

    def tearDown(self):
        self.gateway.shutdown()
        self.tmpdir.cleanup()


class TestValidateTool(GatewayTestCase):

    def test_valid_select(self):
        result = tools.validate_sql(self.gateway, "SELECT id FROM users WHERE id = :id")
        self.assertTrue(result["success"])
        self.assertTrue(result["is_valid"])
        self.assertTrue(result["is_read_only"])
        self.assertEqual(result["parameters"], ["id"])
        self.assertEqual(result["statement_type"], "SELECT")

    def test_empty_sql(self):
        result = tools.validate_sql(self.gateway, "  ")
        self.assertFalse(result["success"])
        self.assertEqual(result["error_type"], "INVALID_INPUT")

    def test_invalid_sql_is_reported_not_raised(self):
        result = tools.validate_sql(self.gateway, "SELECT * FROM users WHERE")
        self.assertTrue(result["success"])
        self.assertFalse(result["is_valid"])
        self.assertEqual(result["errors"][0]["line"], 1)

    def test_validates_in_data_source_dialect(self):
        result = tools.validate_sql(self.gateway, "SELECT id FROM users LIMIT 5", data_source_id="shop")
        self.assertTrue(result["success"])
        self.assertTrue(result["is_valid"])

    def test_unknown_data_source_for_dialect(self):
        result = tools.validate_sql(self.gateway, "SELECT 1", data_source_id="nope")
        self.assertFalse(result["success"])
        self.assertEqual(result["error_type"], "NOT_FOUND")



class TestExecuteTool(GatewayTestCase):

    def test_rows_are_returned(self):
        result = tools.execute_sql(self.gateway, "shop", "SELECT id, name FROM users ORDER BY id", limit=3)
        self.assertTrue(result["success"])
        self.assertEqual(result["data_source_id"], "shop")
        self.assertEqual(result["row_count"], 3)
        self.assertTrue(result["truncated"])
        self.assertEqual(result["rows"][0], {"id": 1, "name": "user1"})
        self.assertEqual([c["name"] for c in result["columns"]], ["id", "name"])

    def test_default_limit_applies(self):
        result = tools.execute_sql(self.gateway, "shop", "SELECT id FROM users")
        self.assertEqual(result["effective_limit"], 10)
        self.assertEqual(result["row_count"], 10)

    def test_parameters_as_json_string(self):
        result = tools.execute_sql(self.gateway, "shop", "SELECT name FROM users WHERE id = ?", parameters="[4]")
        self.assertEqual(result["rows"], [{"name": "user4"}])

    def test_bad_parameters_string(self):
        result = tools.execute_sql(self.gateway, "shop", "SELECT name FROM users WHERE id = ?", parameters="[4")
        self.assertFalse(result["success"])
        self.assertEqual(result["error_type"], "INVALID_INPUT")

    def test_write_is_forbidden(self):
        result = tools.execute_sql(self.gateway, "shop", "UPDATE users SET name = 'x'")
        self.assertFalse(result["success"])
        self.assertEqual(result["error_type"], "FORBIDDEN_OPERATION")
        self.assertEqual(self.audit.records[-1].outcome, "failure")

    def test_validation_errors_are_in_details(self):
        result = tools.execute_sql(self.gateway, "shop", "SELECT 1; SELECT 2")
        self.assertEqual(result["error_type"], "VALIDATION_FAILED")
        self.assertTrue(result["details"]["errors"])

    def test_unknown_data_source(self):
        result = tools.execute_sql(self.gateway, "nope", "SELECT 1")
        self.assertEqual(result["error_type"], "NOT_FOUND")


class TestSchemaTool(GatewayTestCase):

    def test_schema_snapshot(self):
        result = tools.get_schema(self.gateway, "shop")
        self.assertTrue(result["success"])
        self.assertEqual(result["table_count"], 2)
        self.assertEqual(result["view_count"], 1)

        tables = {table["name"]: table for table in result["tables"]}
        self.assertEqual(tables["users"]["primary_keys"], ["id"])
        self.assertEqual(tables["orders"]["foreign_keys"][0]["referenced_table"], "users")
        columns = {column["name"]: column for column in tables["users"]["columns"]}
        self.assertEqual(columns["id"]["type"], "integer")
        self.assertEqual(columns["score"]["type"], "float")
        self.assertFalse(columns["name"]["nullable"])

        view = result["views"][0]
        self.assertEqual(view["name"], "big_spenders")
        self.assertIn("SUM", view["definition"].upper())

    def test_snapshot_is_cached_until_forced(self):
        first = tools.get_schema(self.gateway, "shop")
        second = tools.get_schema(self.gateway, "shop")
        self.assertEqual(first["fetched_at"], second["fetched_at"])
        self.assertEqual(self.gateway.introspector.cached_data_sources(), ["shop"])

    def test_string_force_refresh(self):
        tools.get_schema(self.gateway, "shop")
        result = tools.get_schema(self.gateway, "shop", force_refresh="true")
        self.assertTrue(result["success"])

    def test_registry_change_drops_cached_schema(self):
        tools.get_schema(self.gateway, "shop")
        self.registry.register("shop", "Shop", "sqlite", {"path": "shop.db", "busy_timeout_s": 1})
        self.assertEqual(self.gateway.introspector.cached_data_sources(), [])

    def test_missing_id(self):
        result = tools.get_schema(self.gateway, "")
        self.assertEqual(result["error_type"], "INVALID_INPUT")


class TestConnectionTools(GatewayTestCase):

    def test_list_hides_connection_settings(self):
        result = tools.list_data_sources(self.gateway)
        self.assertEqual(result["count"], 1)
        self.assertEqual(result["data_sources"][0]["engine_kind"], "sqlite")
        self.assertNotIn("connection_config", result["data_sources"][0])

    def test_data_source_test(self):
        result = tools.test_data_source(self.gateway, "shop")
        self.assertTrue(result["success"])
        self.assertEqual(result["table_count"], 2)

    def test_unreachable_data_source(self):
        self.registry.register("ghost", "Ghost", "sqlite", {"path": "missing.db"})
        result = tools.test_data_source(self.gateway, "ghost")
        self.assertFalse(result["success"])
        self.assertIn("not found", result["message"])

    def test_server_info(self):
        result = tools.get_server_info(self.gateway, ServerConfig(log_level="INFO"))
        self.assertEqual(result["name"], "QueryGate")
        self.assertIn("execute_sql", result["tools"])
        self.assertIn("sqlite", result["supported_engines"])
        self.assertTrue(result["configuration"]["read_only"])


if __name__ == '__main__':
    unittest.main()
