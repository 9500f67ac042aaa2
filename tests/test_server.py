"""Tests for the MCP tool layer of the QueryGate server."""

import tempfile
import threading
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

import querygate.main as main_module
from querygate.audit import InMemoryAuditLogger
from querygate.config import GatewayConfig
from querygate.datasource_registry import DataSourceRegistry
from querygate.gateway import SQLGateway
from test_query_executor import create_sample_database


def create_mock_context(session_id: str = "test-session-123"):
    """Create a mock MCP Context for testing."""
    mock_ctx = Mock()
    mock_ctx.session_id = session_id
    # Mock async methods
    mock_ctx.info = AsyncMock()
    mock_ctx.warning = AsyncMock()
    mock_ctx.error = AsyncMock()
    return mock_ctx


def tool_fn(tool):
    """Underlying coroutine function of a registered tool."""
    return getattr(tool, "fn", tool)


class TestSessionId:

    def test_session_id_attribute(self):
        assert main_module.get_session_id(create_mock_context("abc")) == "abc"

    def test_fallback_to_session_object(self):
        ctx = Mock()
        ctx.session_id = None
        assert main_module.get_session_id(ctx) == f"session_{id(ctx.session)}"

    def test_default_session(self):
        ctx = Mock(spec=[])
        assert main_module.get_session_id(ctx) == "default_session"


@pytest.mark.asyncio
class TestMCPToolsAsync:
    """Async tests calling the registered tool functions directly."""

    @pytest.fixture
    def mock_ctx(self):
        return create_mock_context()

    @pytest.fixture
    def audit(self):
        return InMemoryAuditLogger()

    @pytest.fixture
    def gateway(self, audit):
        tmpdir = tempfile.TemporaryDirectory()
        create_sample_database(Path(tmpdir.name) / "shop.db", users=30)
        registry = DataSourceRegistry()
        registry.register("shop", "Shop", "sqlite", {"path": "shop.db"})
        gateway = SQLGateway(GatewayConfig(data_dir=tmpdir.name), registry, audit_logger=audit)
        with patch('querygate.main.get_gateway', return_value=gateway):
            yield gateway
        gateway.shutdown()
        tmpdir.cleanup()

    async def test_validate_sql_valid(self, mock_ctx, gateway):
        result = await tool_fn(main_module.validate_sql)(mock_ctx, "SELECT * FROM users")
        assert result["success"] is True
        assert result["is_valid"] is True
        mock_ctx.info.assert_not_called()

    async def test_validate_sql_invalid_hints_caller(self, mock_ctx, gateway):
        result = await tool_fn(main_module.validate_sql)(mock_ctx, "SELECT FROM users")
        assert result["is_valid"] is False
        mock_ctx.info.assert_awaited_once()

    async def test_validate_sql_unknown_data_source(self, mock_ctx, gateway):
        result = await tool_fn(main_module.validate_sql)(mock_ctx, "SELECT 1", data_source_id="nope")
        assert result["success"] is False
        assert result["error_type"] == "NOT_FOUND"

    async def test_execute_sql_records_session_as_actor(self, mock_ctx, gateway, audit):
        result = await tool_fn(main_module.execute_sql)(
            mock_ctx, data_source_id="shop", sql="SELECT id FROM users ORDER BY id", limit=2
        )
        assert result["success"] is True
        assert result["rows"] == [{"id": 1}, {"id": 2}]
        assert audit.records[-1].actor == "test-session-123"
        # truncated results prompt the caller to page
        mock_ctx.info.assert_awaited_once()

    async def test_execute_sql_forbidden_write(self, mock_ctx, gateway):
        result = await tool_fn(main_module.execute_sql)(
            mock_ctx, data_source_id="shop", sql="DROP TABLE users"
        )
        assert result["success"] is False
        assert result["error_type"] == "FORBIDDEN_OPERATION"

    async def test_execute_sql_named_parameters(self, mock_ctx, gateway):
        result = await tool_fn(main_module.execute_sql)(
            mock_ctx, data_source_id="shop", sql="SELECT name FROM users WHERE id = :id",
            parameters={"id": 3},
        )
        assert result["rows"] == [{"name": "user3"}]
        assert result["truncated"] is False

    async def test_get_schema(self, mock_ctx, gateway):
        result = await tool_fn(main_module.get_schema)(mock_ctx, "shop")
        assert result["success"] is True
        assert {table["name"] for table in result["tables"]} == {"users", "orders"}

    async def test_get_schema_unknown_data_source(self, mock_ctx, gateway):
        result = await tool_fn(main_module.get_schema)(mock_ctx, "nope")
        assert result["error_type"] == "NOT_FOUND"

    async def test_list_data_sources(self, mock_ctx, gateway):
        result = await tool_fn(main_module.list_data_sources)(mock_ctx)
        assert result["data_sources"] == [
            {"id": "shop", "name": "Shop", "engine_kind": "sqlite", "is_active": True}
        ]

    async def test_test_data_source_failure_hints_caller(self, mock_ctx, gateway):
        gateway.registry.register("ghost", "Ghost", "sqlite", {"path": "missing.db"})
        result = await tool_fn(main_module.test_data_source)(mock_ctx, "ghost")
        assert result["success"] is False
        mock_ctx.info.assert_awaited_once()

    async def test_get_server_info(self, mock_ctx, gateway):
        result = await tool_fn(main_module.get_server_info)(mock_ctx)
        assert result["name"] == "QueryGate"
        assert result["configuration"]["data_sources"] == 1
        mock_ctx.info.assert_awaited_once()


class TestCleanup:

    def test_cleanup_shuts_down_gateway(self):
        gateway = Mock()
        with patch.object(main_module, "_gateway", gateway):
            main_module.cleanup_server()
            assert main_module._gateway is None
        gateway.shutdown.assert_called_once()


@pytest.mark.asyncio
class TestGatewayForRequest:

    async def test_first_build_runs_off_the_event_loop(self):
        loop_thread = threading.get_ident()
        built_on = []
        gateway = Mock()

        def build():
            built_on.append(threading.get_ident())
            return gateway

        with patch.object(main_module, "_gateway", None), patch('querygate.main.get_gateway', side_effect=build):
            assert await main_module.gateway_for_request() is gateway
        assert len(built_on) == 1
        assert built_on[0] != loop_thread

    async def test_built_gateway_is_returned_without_a_thread_hop(self):
        gateway = Mock()
        with patch.object(main_module, "_gateway", gateway), patch('querygate.main.get_gateway') as build:
            assert await main_module.gateway_for_request() is gateway
        build.assert_not_called()
