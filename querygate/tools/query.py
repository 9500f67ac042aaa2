"""SQL validation and execution tools."""

import json
import logging
from typing import Any, Dict, Optional

from ..errors import GatewayError, InvalidInputError
from ..gateway import SQLGateway
from ..models import ExecutionRequest
from ..shared import create_error_response, gateway_error_response, internal_error_response

logger = logging.getLogger(__name__)


def validate_sql(gateway: SQLGateway, sql: str, data_source_id: Optional[str] = None) -> Dict[str, Any]:
    """Validate SQL without touching any data source. Full documentation in main.py."""
    if not isinstance(sql, str) or not sql.strip():
        return create_error_response("SQL text is empty", InvalidInputError.code)
    try:
        result = gateway.validate(sql, data_source_id)
    except GatewayError as e:
        return gateway_error_response(e)
    except Exception as e:
        return internal_error_response("validate_sql", e)

    logger.info(f"SQL validation completed: {'valid' if result.is_valid else 'invalid'}")
    return {"success": True, **result.to_dict()}


def _coerce_parameters(parameters: Optional[Any]) -> Optional[Any]:
    # LLM clients sometimes send the bind values as a JSON string
    if isinstance(parameters, str):
        if not parameters.strip():
            return None
        try:
            return json.loads(parameters)
        except json.JSONDecodeError:
            raise InvalidInputError("parameters must be a JSON list or object") from None
    return parameters


def execute_sql(
    gateway: SQLGateway,
    data_source_id: str,
    sql: str,
    limit: Optional[int] = None,
    offset: int = 0,
    timeout_ms: Optional[int] = None,
    parameters: Optional[Any] = None,
    actor: str = "anonymous",
) -> Dict[str, Any]:
    """Execute SQL against a data source. Full documentation in main.py."""
    try:
        request = ExecutionRequest(
            sql=sql,
            data_source_id=data_source_id,
            limit=limit,
            timeout_ms=timeout_ms,
            offset=offset or 0,
            parameters=_coerce_parameters(parameters),
            actor=actor,
        )
        result = gateway.execute(request)
    except GatewayError as e:
        logger.warning(f"SQL execution on '{data_source_id}' failed with {e.code}: {e.message}")
        return gateway_error_response(e)
    except Exception as e:
        return internal_error_response("execute_sql", e)

    logger.info(f"SQL query executed successfully: {result.row_count} rows returned")
    return {"success": True, "data_source_id": data_source_id, **result.to_dict()}
