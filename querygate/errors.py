"""Exception taxonomy for the SQL gateway.

Every gateway failure carries a stable ``code`` that the tool layer returns to
callers as ``error_type``.
"""

from typing import Any, Dict, List, Optional


class GatewayError(Exception):
    """Base class for all gateway failures."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidInputError(GatewayError):
    """Request arguments are missing or malformed (e.g. empty SQL)."""

    code = "INVALID_INPUT"


class ValidationError(GatewayError):
    """The SQL text failed validation; carries the validator's error list."""

    code = "VALIDATION_FAILED"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, {"errors": errors or []})
        self.errors = errors or []


class ForbiddenOperationError(GatewayError):
    """A mutating statement was submitted while the gateway is read-only."""

    code = "FORBIDDEN_OPERATION"


class DataSourceNotFoundError(GatewayError):
    """The data source id is unknown or the data source is inactive."""

    code = "NOT_FOUND"

    def __init__(self, data_source_id: str, reason: str = "not found"):
        super().__init__(
            f"Data source '{data_source_id}' {reason}",
            {"data_source_id": data_source_id},
        )
        self.data_source_id = data_source_id


class DataSourceConnectionError(GatewayError):
    """The engine is unreachable, rejected credentials, or failed mid-use."""

    code = "CONNECTION_ERROR"


class PoolTimeoutError(DataSourceConnectionError):
    """No pooled connection became available within the acquire timeout."""

    def __init__(self, data_source_id: str, waited_ms: float):
        super().__init__(
            f"Timed out after {waited_ms:.0f}ms waiting for a connection to data source '{data_source_id}'",
            {"data_source_id": data_source_id, "waited_ms": round(waited_ms, 2), "timeout": True},
        )
        self.data_source_id = data_source_id
        self.waited_ms = waited_ms


class QueryTimeoutError(GatewayError):
    """Execution or schema refresh exceeded its wall-clock budget."""

    code = "TIMEOUT"

    def __init__(self, message: str, data_source_id: str, elapsed_ms: float):
        super().__init__(message, {"data_source_id": data_source_id, "elapsed_ms": round(elapsed_ms, 2)})
        self.data_source_id = data_source_id
        self.elapsed_ms = elapsed_ms


class QueryExecutionError(GatewayError):
    """The engine rejected a statement that passed validation."""

    code = "EXECUTION_ERROR"
