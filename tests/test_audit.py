"""Tests for audit logger collaborators."""

import json
import unittest

from querygate.audit import AuditLogger, InMemoryAuditLogger, LoggingAuditLogger
from querygate.models import AuditRecord


def make_record(outcome="success", **overrides):
    fields = dict(
        actor="session-1",
        action="execute",
        data_source_id="ds1",
        sql_hash="ab" * 32,
        is_read_only=True,
        duration_ms=12.5,
        outcome=outcome,
    )
    fields.update(overrides)
    return AuditRecord(**fields)


class TestAuditLoggers(unittest.TestCase):

    def test_logging_audit_logger_writes_json(self):
        with self.assertLogs("querygate.audit", level="INFO") as captured:
            LoggingAuditLogger().record(make_record(row_count=3))
        line = captured.output[0]
        payload = json.loads(line.split("AUDIT: ", 1)[1])
        self.assertEqual(payload["actor"], "session-1")
        self.assertEqual(payload["row_count"], 3)
        self.assertNotIn("sql", payload)

    def test_failures_are_logged_as_warnings(self):
        with self.assertLogs("querygate.audit", level="WARNING") as captured:
            LoggingAuditLogger().record(make_record("failure", error_code="TIMEOUT"))
        self.assertIn("WARNING", captured.output[0])

    def test_in_memory_logger_bounds_records(self):
        audit = InMemoryAuditLogger(max_records=2)
        for index in range(3):
            audit.record(make_record(row_count=index))
        self.assertEqual([r.row_count for r in audit.records], [1, 2])
        audit.clear()
        self.assertEqual(audit.records, [])

    def test_broken_sink_never_raises(self):
        class BrokenAuditLogger(AuditLogger):
            def write(self, entry):
                raise IOError("disk full")

        with self.assertLogs("querygate.audit", level="ERROR"):
            BrokenAuditLogger().record(make_record())


if __name__ == '__main__':
    unittest.main()
