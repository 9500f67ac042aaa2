"""
Operation handlers behind the QueryGate MCP tools.

Each handler takes the gateway explicitly and returns a JSON-ready dict, so the
same functions serve the MCP server and direct callers alike.
"""

from .connection import list_data_sources, test_data_source
from .schema import get_schema
from .query import validate_sql, execute_sql
from .info import get_server_info

__all__ = [
    'list_data_sources',
    'test_data_source',
    'get_schema',
    'validate_sql',
    'execute_sql',
    'get_server_info'
]
