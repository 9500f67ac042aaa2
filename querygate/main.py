"""Main MCP server application using FastMCP."""

import asyncio
import logging
import threading
from typing import Any, Dict, Optional, Union

from fastmcp import FastMCP, Context

from . import __name__ as SERVER_NAME
import querygate.tools as tools
from .config import config_manager
from .gateway import SQLGateway

logger = logging.getLogger(__name__)


# --- MCP Server Setup ---

mcp = FastMCP(
    name=SERVER_NAME,
    instructions="""
# QueryGate - SQL Execution Gateway

Runs ad hoc SQL against registered data sources on behalf of the caller, under
server-enforced row limits, timeouts and (by default) read-only mode.

## RECOMMENDED WORKFLOW

```
1. list_data_sources()
   → Find the id of the data source to query

2. get_schema(data_source_id="...")
   → Tables, views, columns with common types, primary and foreign keys
   → Cached per data source; pass force_refresh=true after DDL changes

3. validate_sql(sql="...")
   → Syntax errors with line/column, read-only classification, bind parameters
   → Never touches a database

4. execute_sql(data_source_id="...", sql="...", limit=100)
   → Rows as JSON objects, normalized column types
   → truncated=true means more rows matched than the effective limit
```

## RULES ENFORCED BY THE GATEWAY

- Exactly one statement per request
- Read-only mode rejects INSERT/UPDATE/DELETE/DDL, including writes nested in CTEs
- limit is capped at the server maximum; timeout_ms at the server maximum timeout
- Errors come back as {"success": false, "error", "error_type"} where error_type is one of
  INVALID_INPUT, VALIDATION_FAILED, FORBIDDEN_OPERATION, NOT_FOUND, CONNECTION_ERROR,
  TIMEOUT, EXECUTION_ERROR
"""
)


def get_session_id(ctx: Context) -> str:
    """Get a unique session identifier from context.

    Args:
        ctx: The FastMCP context

    Returns:
        A unique session identifier string
    """
    # Try ctx.session_id first (may be None with HTTP transport)
    if hasattr(ctx, 'session_id') and ctx.session_id:
        return str(ctx.session_id)
    # Fall back to id(ctx.session) as unique identifier
    if hasattr(ctx, 'session') and ctx.session:
        return f"session_{id(ctx.session)}"
    # Last resort: use a default session (single-user mode)
    return "default_session"


_gateway: Optional[SQLGateway] = None
_gateway_lock = threading.Lock()


def get_gateway() -> SQLGateway:
    """Get or create the process-wide gateway from the environment configuration."""
    global _gateway
    with _gateway_lock:
        if _gateway is None:
            _gateway = SQLGateway(config_manager.get_gateway_config())
            _gateway.start()
        return _gateway


async def gateway_for_request() -> SQLGateway:
    """The gateway for a tool call; the first build runs on a worker thread, not the event loop."""
    if _gateway is not None:
        return _gateway
    return await asyncio.to_thread(get_gateway)


# --- MCP Tools ---

@mcp.tool()
async def validate_sql(ctx: Context, sql: str, data_source_id: Optional[str] = None) -> Dict[str, Any]:
    """Validate a SQL statement without executing it.

    Parses the statement, reports syntax errors with line and column, and
    classifies it as read-only or mutating. Mutating statements nested in
    CTEs (e.g. WITH t AS (DELETE ... RETURNING *) SELECT ...) are caught.

    Args:
        sql: The SQL text to validate (exactly one statement)
        data_source_id: Optional data source whose SQL dialect is used for parsing

    Returns:
        is_valid, errors, warnings (performance/security/style), is_read_only,
        parameters (placeholders found), statement_type, tables, formatted_sql
    """
    result = tools.validate_sql(await gateway_for_request(), sql, data_source_id)
    if result.get("success") and not result.get("is_valid"):
        await ctx.info("SQL is invalid; fix the reported errors before calling execute_sql")
    return result


@mcp.tool()
async def execute_sql(
    ctx: Context,
    data_source_id: str,
    sql: str,
    limit: Optional[int] = None,
    offset: int = 0,
    timeout_ms: Optional[int] = None,
    parameters: Optional[Union[list, dict, str]] = None,
) -> Dict[str, Any]:
    """Execute one SQL statement against a registered data source.

    The statement is re-validated, refused if it writes while the gateway is
    read-only, bounded to the effective row limit, and cancelled once it
    exceeds its timeout.

    Args:
        data_source_id: Id of the data source (see list_data_sources)
        sql: The SQL text (exactly one statement)
        limit: Maximum rows to return; defaults to the server default, capped at the server maximum
        offset: Rows to skip before the first returned row
        timeout_ms: Execution timeout; capped at the server maximum
        parameters: Bind values: a list for ? / $1 / %s placeholders, an object for :name placeholders

    Returns:
        columns (name, common type, native type), rows as objects, row_count,
        truncated, execution_time_ms, effective_limit, warnings; or an error
        object with error_type set to the failure code
    """
    gateway = await gateway_for_request()
    actor = get_session_id(ctx)
    result = await asyncio.to_thread(
        tools.execute_sql,
        gateway,
        data_source_id,
        sql,
        limit=limit,
        offset=offset,
        timeout_ms=timeout_ms,
        parameters=parameters,
        actor=actor,
    )
    if result.get("truncated"):
        await ctx.info(f"Result truncated to {result['effective_limit']} rows; narrow the query or page with offset")
    return result


@mcp.tool()
async def get_schema(ctx: Context, data_source_id: str, force_refresh: bool = False) -> Dict[str, Any]:
    """Get the schema snapshot of a data source.

    Snapshots are cached per data source for the configured TTL; two calls
    inside the TTL cost one catalog scan.

    Args:
        data_source_id: Id of the data source
        force_refresh: Rebuild the snapshot even if the cached one is fresh

    Returns:
        tables (columns, primary_keys, foreign_keys, indexes), views (columns,
        definition), fetched_at, ttl_expires_at, warnings
    """
    return await asyncio.to_thread(tools.get_schema, await gateway_for_request(), data_source_id, force_refresh)


@mcp.tool()
async def list_data_sources(ctx: Context) -> Dict[str, Any]:
    """List the active data sources (id, name, engine kind).

    Returns:
        Dictionary with count and data_sources
    """
    return tools.list_data_sources(await gateway_for_request())


@mcp.tool()
async def test_data_source(ctx: Context, data_source_id: str) -> Dict[str, Any]:
    """Open a throwaway connection to a data source and report whether it is reachable.

    Args:
        data_source_id: Id of the data source

    Returns:
        success, message, latency_ms, table_count
    """
    result = await asyncio.to_thread(tools.test_data_source, await gateway_for_request(), data_source_id)
    if result.get("success") is False:
        await ctx.info("Connection test failed; check the data source configuration")
    return result


@mcp.tool()
async def get_server_info(ctx: Context) -> Dict[str, Any]:
    """Get information about the MCP server and its capabilities.

    Returns:
        Dictionary containing server information
    """
    await ctx.info("Server info retrieved; next call should be list_data_sources to start working")
    return tools.get_server_info(await gateway_for_request(), config_manager.get_server_config())


# --- Cleanup on shutdown ---

def cleanup_server():
    """Clean up server resources."""
    global _gateway
    with _gateway_lock:
        if _gateway is not None:
            _gateway.shutdown()
            _gateway = None


# Main execution removed - server should only be started via server.py
# This prevents double startup when main.py is imported
