"""Utility functions for QueryGate."""

import hashlib
import logging
import re
import sys
from typing import Any, Optional, TextIO

from .constants import MAX_LOGGED_SQL_LENGTH

REDACTED = '***REDACTED***'

# Substrings of config keys whose values never reach a log line
SENSITIVE_KEY_PARTS = frozenset({
    'password', 'passwd', 'pwd', 'secret', 'api_key', 'apikey', 'token', 'auth',
    'credentials', 'private_key', 'passphrase', 'encrypted_config',
})

PLAIN_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
STRUCTURED_LOG_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
)

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "snowflake.connector", "urllib3")

_URL_CREDENTIALS = re.compile(r'(\w+(?:\+\w+)?://[^:/@\s]+):[^@\s]+@')


def setup_logging(log_level: str = "INFO", structured: bool = False,
                  stream: Optional[TextIO] = None) -> logging.Logger:
    """Configure the root logger with a single console handler.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL); unknown names mean INFO
        structured: Emit JSON-shaped lines instead of the plain format
        stream: Target stream, stdout by default

    Returns:
        The root logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(STRUCTURED_LOG_FORMAT if structured else PLAIN_LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    # Replace handlers so repeated setup does not duplicate lines
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return root_logger


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def sanitize_for_logging(data: Any) -> Any:
    """Return a copy of ``data`` safe to log.

    Values under sensitive keys are replaced, nested dicts and lists are walked,
    and credentials inside connection URLs are masked.
    """
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(key) else sanitize_for_logging(value)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [sanitize_for_logging(item) for item in data]
    if isinstance(data, str) and '://' in data:
        return redact_error_message(data)
    return data


def redact_error_message(message: str) -> str:
    """Strip credentials out of connection URLs embedded in driver error text."""
    return _URL_CREDENTIALS.sub(r'\1:***@', message)


def sql_fingerprint(sql: str) -> str:
    """Return the sha256 hex digest of the exact SQL text."""
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()


def truncate_sql(sql: str, max_length: int = MAX_LOGGED_SQL_LENGTH) -> str:
    """Shorten SQL for log lines."""
    if len(sql) <= max_length:
        return sql
    return sql[:max_length] + "..."
