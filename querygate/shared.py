"""Shared response helpers for the QueryGate tool layer."""

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from .errors import GatewayError

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    success: bool = False
    error: str
    error_type: str = "INTERNAL_ERROR"
    details: Optional[Dict[str, Any]] = None


def create_error_response(message: str, error_type: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Create a standardized error response."""
    response = ErrorResponse(error=message, error_type=error_type, details=details or None)
    return response.model_dump(exclude_none=True)


def gateway_error_response(error: GatewayError) -> Dict[str, Any]:
    """Turn a gateway failure into its error response; ``error_type`` is the wire code."""
    return create_error_response(error.message, error.code, error.details)


def internal_error_response(operation: str, error: Exception) -> Dict[str, Any]:
    """Error response for failures outside the gateway taxonomy."""
    logger.error(f"Unexpected error in {operation}: {type(error).__name__}: {error}")
    return create_error_response(f"Internal server error during {operation}", "INTERNAL_ERROR")
