"""Data source listing and connection diagnostic tools."""

import logging
from typing import Any, Dict

from ..errors import GatewayError, InvalidInputError
from ..gateway import SQLGateway
from ..shared import create_error_response, gateway_error_response, internal_error_response

logger = logging.getLogger(__name__)


def list_data_sources(gateway: SQLGateway) -> Dict[str, Any]:
    """List the active data sources. Connection settings are never returned."""
    sources = [source.to_dict() for source in gateway.registry.list()]
    logger.debug(f"Listing {len(sources)} active data source(s)")
    return {"success": True, "count": len(sources), "data_sources": sources}


def test_data_source(gateway: SQLGateway, data_source_id: str) -> Dict[str, Any]:
    """Open a throwaway connection to a data source and report reachability. Full documentation in main.py."""
    if not data_source_id:
        return create_error_response("data_source_id is required", InvalidInputError.code)
    try:
        outcome = gateway.test_data_source(data_source_id)
    except GatewayError as e:
        return gateway_error_response(e)
    except Exception as e:
        return internal_error_response("test_data_source", e)
    return {"data_source_id": data_source_id, **outcome}
