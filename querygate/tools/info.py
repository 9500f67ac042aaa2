"""Server information tool."""

import logging
from typing import Dict, Any

from .. import __version__, __name__ as SERVER_NAME, __description__
from ..config import ServerConfig
from ..gateway import SQLGateway

logger = logging.getLogger(__name__)


def get_server_info(gateway: SQLGateway, server_config: ServerConfig) -> Dict[str, Any]:
    """Get server information implementation. Full documentation in main.py."""
    return {
        "name": SERVER_NAME,
        "version": __version__,
        "description": __description__,
        "supported_engines": gateway.drivers.kinds(),
        "features": [
            "SQL validation with read-only classification (nested CTE writes included)",
            "Row limits enforced in the executed SQL with exact truncation detection",
            "Per-data-source connection pools with health checks and idle eviction",
            "Wall-clock query timeouts with engine-side cancellation",
            "Schema snapshots cached with a TTL and forced refresh",
            "Audit record for every execution"
        ],
        "tools": [
            "validate_sql",         # Validate SQL without touching a database
            "execute_sql",          # Execute SQL under the gateway's limits
            "get_schema",           # Cached schema snapshot of a data source
            "list_data_sources",    # Active data sources
            "test_data_source",     # Connection diagnostics
            "get_server_info"       # Server information and capabilities
        ],
        "workflow": {
            "recommended_steps": [
                "1. list_data_sources() - Find the data source to query",
                "2. get_schema() - Look up tables, columns and relationships",
                "3. validate_sql() - Check the SQL before running it",
                "4. execute_sql() - Run the validated query"
            ]
        },
        "configuration": {
            "log_level": server_config.log_level,
            **gateway.status()
        }
    }
