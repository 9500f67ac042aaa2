"""Schema snapshot tool."""

import logging
from typing import Any, Dict

from ..errors import GatewayError, InvalidInputError
from ..gateway import SQLGateway
from ..shared import create_error_response, gateway_error_response, internal_error_response

logger = logging.getLogger(__name__)


def get_schema(gateway: SQLGateway, data_source_id: str, force_refresh: bool = False) -> Dict[str, Any]:
    """Return the cached (or freshly introspected) schema of a data source. Full documentation in main.py."""
    if not data_source_id:
        return create_error_response("data_source_id is required", InvalidInputError.code)

    # Handle string "True"/"False" from LLMs that send strings instead of booleans
    if isinstance(force_refresh, str):
        force_refresh = force_refresh.lower() in ('true', '1', 'yes')

    try:
        snapshot = gateway.get_schema(data_source_id, force_refresh=bool(force_refresh))
    except GatewayError as e:
        logger.warning(f"Schema retrieval for '{data_source_id}' failed with {e.code}: {e.message}")
        return gateway_error_response(e)
    except Exception as e:
        return internal_error_response("get_schema", e)

    return {
        "success": True,
        "table_count": len(snapshot.tables),
        "view_count": len(snapshot.views),
        **snapshot.to_dict(),
    }
