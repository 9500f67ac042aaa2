"""QueryGate - SQL execution gateway with read-only enforcement, served over MCP."""

__version__ = "0.1.0"
__author__ = "QueryGate Contributors"
__email__ = "contributors@example.com"
__description__ = "QueryGate - validate, bound and execute ad hoc SQL against registered data sources"
__name__ = "QueryGate"

# Export main components for easier imports
from .config import GatewayConfig, config_manager
from .constants import SUPPORTED_ENGINE_KINDS
from .datasource_registry import DataSourceRegistry
from .errors import GatewayError
from .gateway import SQLGateway
from .models import DataSource, EngineKind, ExecutionRequest, ExecutionResult, SchemaSnapshot, ValidationResult
from .sql_validator import validate

__all__ = [
    "SQLGateway",
    "GatewayConfig",
    "DataSourceRegistry",
    "DataSource",
    "EngineKind",
    "ExecutionRequest",
    "ExecutionResult",
    "SchemaSnapshot",
    "ValidationResult",
    "GatewayError",
    "validate",
    "config_manager",
    "SUPPORTED_ENGINE_KINDS",
    "__version__",
    "__name__",
    "__description__",
]
