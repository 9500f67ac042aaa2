#!/usr/bin/env python3
"""Startup script for QueryGate."""

import sys
import signal

from querygate.main import mcp, cleanup_server, get_gateway
from querygate.config import config_manager
from querygate.utils import setup_logging
from querygate import __version__, __name__ as SERVER_NAME

config = config_manager.get_server_config()
logger = setup_logging(config.log_level, structured=False)

TOOL_SUMMARIES = [
    ("validate_sql", "syntax check and read-only classification, no database access"),
    ("execute_sql", "one statement under row limits, timeouts and read-only policy"),
    ("get_schema", "cached schema snapshot of a data source"),
    ("list_data_sources", "active data sources"),
    ("test_data_source", "reachability check with latency"),
    ("get_server_info", "server capabilities and current configuration"),
]


def setup_signal_handlers():
    """Exit cleanly on SIGINT/SIGTERM so the gateway pools get closed."""
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def print_startup_info():
    """Log version, tools and effective configuration."""
    gateway_config = config_manager.get_gateway_config()

    logger.info("=" * 60)
    logger.info(f"{SERVER_NAME} v{__version__} - SQL execution gateway over MCP")
    logger.info("=" * 60)

    logger.info("Tools:")
    for name, summary in TOOL_SUMMARIES:
        logger.info(f"  • {name}: {summary}")

    settings = [
        ("Log level", config.log_level),
        ("Read-only", gateway_config.read_only),
        ("Row limit", f"{gateway_config.default_limit} (max {gateway_config.max_limit})"),
        ("Query timeout", f"{gateway_config.query_timeout_ms}ms (max {gateway_config.max_query_timeout_ms}ms)"),
        ("Pool size per data source", gateway_config.pool_size),
        ("Schema cache TTL", f"{gateway_config.schema_ttl_s}s"),
        ("Data sources file", gateway_config.datasources_file or "not set"),
        ("Endpoint", f"{config.mcp_transport}://{config.mcp_server_host}:{config.mcp_server_port}"),
    ]
    logger.info("Configuration:")
    for label, value in settings:
        logger.info(f"  • {label}: {value}")


def main():
    """Start the QueryGate MCP server."""
    try:
        setup_signal_handlers()
        print_startup_info()

        # Load data sources before the first request arrives
        get_gateway()

        transport_name = "streamable-http" if config.mcp_transport == "http" else "SSE"
        logger.info(f"Starting {SERVER_NAME} MCP server with {transport_name} transport")
        mcp.run(transport=config.mcp_transport, host=config.mcp_server_host, port=config.mcp_server_port)

    except KeyboardInterrupt:
        logger.info("Server stopped by user (Ctrl+C)")
    except Exception as e:
        logger.error(f"Critical server error: {type(e).__name__}: {e}")
        return 1
    finally:
        cleanup_server()
        logger.info("Server shutdown complete")

    return 0


if __name__ == "__main__":
    sys.exit(main())
