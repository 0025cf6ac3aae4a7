"""
Tests for structured logging and payload redaction.
"""

import logging

from studyrepo.core.auditor import audit
from studyrepo.util.logging import SENSITIVE_FIELDS, audit_event, logger, sanitize_payload


class TestSanitizePayload:
    """Test that dataset bodies never reach the log."""

    def test_sensitive_fields_redacted(self):
        payload = {"file": "flashcard_econ_w1.json", "items": [{"question": "secret"}], "data": "x"}
        sanitized = sanitize_payload(payload)
        assert sanitized["file"] == "flashcard_econ_w1.json"
        assert sanitized["items"] == "[REDACTED]"
        assert sanitized["data"] == "[REDACTED]"

    def test_nested_and_long_strings(self):
        sanitized = sanitize_payload({"meta": {"body": "b", "note": "n" * 150}})
        assert sanitized["meta"]["body"] == "[REDACTED]"
        assert sanitized["meta"]["note"] == "n" * 100 + "..."

    def test_reveal_sensitive(self):
        assert sanitize_payload({"body": "b"}, reveal_sensitive=True) == {"body": "b"}

    def test_original_question_is_sensitive(self):
        assert "original_question" in SENSITIVE_FIELDS


class TestStructuredLogger:
    """Test log levels and messages."""

    def test_failed_operation_logs_error(self, caplog):
        with caplog.at_level(logging.INFO, logger="studyrepo"):
            logger.log_store_write("/tmp/x.json", "index", "failed", {"error": "disk full"})
        assert caplog.records[-1].levelno == logging.ERROR
        assert "store.write.index" in caplog.records[-1].getMessage()

    def test_audit_result_counts(self, caplog):
        with caplog.at_level(logging.INFO, logger="studyrepo"):
            audit("flashcard", [{"answer": "4"}])
        message = caplog.records[-1].getMessage()
        assert "audit.result" in message
        assert "rejected" in message
        assert "'Blocker': 1" in message

    def test_audit_event_redacts_items(self, caplog):
        with caplog.at_level(logging.INFO, logger="studyrepo"):
            audit_event("inbox.submitted", {"record_id": "inbox_1"}, {"items": [{"question": "private text"}]})
        message = caplog.records[-1].getMessage()
        assert "inbox_1" in message
        assert "private text" not in message
        assert "[REDACTED]" in message
