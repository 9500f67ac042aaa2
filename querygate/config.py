"""Configuration management for QueryGate."""

import os
import logging
from typing import Optional
from dataclasses import dataclass
from dotenv import load_dotenv

from .constants import (
    DEFAULT_ROW_LIMIT,
    MAX_ROW_LIMIT,
    DEFAULT_QUERY_TIMEOUT_MS,
    MAX_QUERY_TIMEOUT_MS,
    DEFAULT_POOL_SIZE,
    DEFAULT_ACQUIRE_TIMEOUT_MS,
    DEFAULT_IDLE_TIMEOUT_S,
    DEFAULT_SWEEP_INTERVAL_S,
    DEFAULT_SCHEMA_TTL_S,
    DEFAULT_DATA_DIR,
    SCHEMA_PARTIAL_OMIT,
    SCHEMA_PARTIAL_POLICIES,
)

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer for {name}: '{value}'. Defaulting to {default}.")
        return default


@dataclass
class ServerConfig:
    """Server configuration settings."""
    log_level: str
    mcp_transport: str = "http"
    mcp_server_host: str = "localhost"
    mcp_server_port: int = 9000

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.mcp_transport not in ["http", "sse"]:
            logger.warning(f"Invalid MCP_TRANSPORT value '{self.mcp_transport}'. Defaulting to 'http'.")
            self.mcp_transport = "http"


@dataclass
class GatewayConfig:
    """Execution policy, pooling and caching settings of the gateway."""
    read_only: bool = True
    default_limit: int = DEFAULT_ROW_LIMIT
    max_limit: int = MAX_ROW_LIMIT
    query_timeout_ms: int = DEFAULT_QUERY_TIMEOUT_MS
    max_query_timeout_ms: int = MAX_QUERY_TIMEOUT_MS
    pool_size: int = DEFAULT_POOL_SIZE
    acquire_timeout_ms: int = DEFAULT_ACQUIRE_TIMEOUT_MS
    idle_timeout_s: float = DEFAULT_IDLE_TIMEOUT_S
    sweep_interval_s: float = DEFAULT_SWEEP_INTERVAL_S
    schema_ttl_s: float = DEFAULT_SCHEMA_TTL_S
    schema_partial_failure: str = SCHEMA_PARTIAL_OMIT
    data_dir: str = DEFAULT_DATA_DIR
    datasources_file: Optional[str] = None

    def __post_init__(self):
        """Validate configuration after initialization."""
        positive_defaults = {
            "max_limit": MAX_ROW_LIMIT,
            "default_limit": DEFAULT_ROW_LIMIT,
            "query_timeout_ms": DEFAULT_QUERY_TIMEOUT_MS,
            "max_query_timeout_ms": MAX_QUERY_TIMEOUT_MS,
            "pool_size": DEFAULT_POOL_SIZE,
            "acquire_timeout_ms": DEFAULT_ACQUIRE_TIMEOUT_MS,
            "idle_timeout_s": DEFAULT_IDLE_TIMEOUT_S,
            "sweep_interval_s": DEFAULT_SWEEP_INTERVAL_S,
            "schema_ttl_s": DEFAULT_SCHEMA_TTL_S,
        }
        for field_name, default in positive_defaults.items():
            if getattr(self, field_name) <= 0:
                logger.warning(f"Invalid {field_name} value '{getattr(self, field_name)}'. Defaulting to {default}.")
                setattr(self, field_name, default)

        if self.default_limit > self.max_limit:
            logger.warning(
                f"default_limit {self.default_limit} exceeds max_limit {self.max_limit}. Capping default_limit."
            )
            self.default_limit = self.max_limit

        if self.query_timeout_ms > self.max_query_timeout_ms:
            logger.warning(
                f"query_timeout_ms {self.query_timeout_ms} exceeds max_query_timeout_ms "
                f"{self.max_query_timeout_ms}. Capping query_timeout_ms."
            )
            self.query_timeout_ms = self.max_query_timeout_ms

        if self.schema_partial_failure not in SCHEMA_PARTIAL_POLICIES:
            logger.warning(
                f"Invalid schema_partial_failure value '{self.schema_partial_failure}'. "
                f"Defaulting to '{SCHEMA_PARTIAL_OMIT}'."
            )
            self.schema_partial_failure = SCHEMA_PARTIAL_OMIT

    @property
    def acquire_timeout_s(self) -> float:
        return self.acquire_timeout_ms / 1000.0


class ConfigManager:
    """Manages application configuration."""

    def __init__(self, env_path: Optional[str] = None):
        """Initialize configuration manager."""
        # Load .env from project root (one level up from the package)
        if env_path is None:
            env_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), '.env')
        load_dotenv(env_path)
        self._server_config: Optional[ServerConfig] = None
        self._gateway_config: Optional[GatewayConfig] = None

    def get_server_config(self) -> ServerConfig:
        """Get server configuration."""
        if self._server_config is None:
            self._server_config = ServerConfig(
                log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
                mcp_transport=os.getenv("MCP_TRANSPORT", "http").lower(),
                mcp_server_host=os.getenv("MCP_SERVER_HOST", "localhost"),
                mcp_server_port=_env_int("MCP_SERVER_PORT", 9000)
            )
            logger.info("Server configuration loaded")
        return self._server_config

    def get_gateway_config(self) -> GatewayConfig:
        """Get gateway configuration."""
        if self._gateway_config is None:
            self._gateway_config = GatewayConfig(
                read_only=_env_bool("QUERYGATE_READ_ONLY", True),
                default_limit=_env_int("QUERYGATE_DEFAULT_LIMIT", DEFAULT_ROW_LIMIT),
                max_limit=_env_int("QUERYGATE_MAX_LIMIT", MAX_ROW_LIMIT),
                query_timeout_ms=_env_int("QUERYGATE_QUERY_TIMEOUT_MS", DEFAULT_QUERY_TIMEOUT_MS),
                max_query_timeout_ms=_env_int("QUERYGATE_MAX_QUERY_TIMEOUT_MS", MAX_QUERY_TIMEOUT_MS),
                pool_size=_env_int("QUERYGATE_POOL_SIZE", DEFAULT_POOL_SIZE),
                acquire_timeout_ms=_env_int("QUERYGATE_ACQUIRE_TIMEOUT_MS", DEFAULT_ACQUIRE_TIMEOUT_MS),
                idle_timeout_s=_env_int("QUERYGATE_IDLE_TIMEOUT_S", DEFAULT_IDLE_TIMEOUT_S),
                sweep_interval_s=_env_int("QUERYGATE_SWEEP_INTERVAL_S", DEFAULT_SWEEP_INTERVAL_S),
                schema_ttl_s=_env_int("QUERYGATE_SCHEMA_TTL_S", DEFAULT_SCHEMA_TTL_S),
                schema_partial_failure=os.getenv("QUERYGATE_SCHEMA_PARTIAL_FAILURE", SCHEMA_PARTIAL_OMIT).lower(),
                data_dir=os.getenv("QUERYGATE_DATA_DIR", DEFAULT_DATA_DIR),
                datasources_file=os.getenv("QUERYGATE_DATASOURCES_FILE") or None,
            )
            logger.info(
                f"Gateway configuration loaded (read_only={self._gateway_config.read_only}, "
                f"max_limit={self._gateway_config.max_limit}, pool_size={self._gateway_config.pool_size})"
            )
        return self._gateway_config


# Global configuration manager instance
config_manager = ConfigManager()
