"""Audit logger collaborators.

Audit recording is fire-and-forget: a failing sink is logged and never turns a
finished request into a failed one.
"""

import json
import logging
import threading
from typing import List, Optional

from .models import AuditRecord

logger = logging.getLogger(__name__)

AUDIT_LOGGER_NAME = "querygate.audit"


class AuditLogger:
    """Accepts audit records."""

    def record(self, entry: AuditRecord) -> None:
        try:
            self.write(entry)
        except Exception as e:
            logger.error(f"Failed to record audit entry for action '{entry.action}': {e}")

    def write(self, entry: AuditRecord) -> None:
        raise NotImplementedError


class LoggingAuditLogger(AuditLogger):
    """Writes one JSON line per record to the ``querygate.audit`` logger."""

    def __init__(self, logger_name: str = AUDIT_LOGGER_NAME):
        self._logger = logging.getLogger(logger_name)

    def write(self, entry: AuditRecord) -> None:
        level = logging.INFO if entry.outcome == "success" else logging.WARNING
        self._logger.log(level, f"AUDIT: {json.dumps(entry.to_dict(), sort_keys=True)}")


class InMemoryAuditLogger(AuditLogger):
    """Keeps records in memory, newest last."""

    def __init__(self, max_records: Optional[int] = None):
        self.max_records = max_records
        self._records: List[AuditRecord] = []
        self._lock = threading.Lock()

    def write(self, entry: AuditRecord) -> None:
        with self._lock:
            self._records.append(entry)
            if self.max_records is not None and len(self._records) > self.max_records:
                del self._records[: len(self._records) - self.max_records]

    @property
    def records(self) -> List[AuditRecord]:
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
