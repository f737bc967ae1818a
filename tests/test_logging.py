"""
Structured logging - message format and payload sanitization.
"""

import logging

from util.logging import StructuredLogger, audit_event, mask_email, sanitize_payload


class TestSanitization:
    """Test privacy controls on logged payloads."""

    def test_mask_email(self):
        assert mask_email("contact ana.perez@example.com now") == "contact an***@example.com now"

    def test_sensitive_fields_redacted(self):
        payload = {"subject": "Hi", "password": "hunter2", "html_body": "<p>x</p>"}
        sanitized = sanitize_payload(payload)
        assert sanitized["subject"] == "Hi"
        assert sanitized["password"] == "[REDACTED]"
        assert sanitized["html_body"] == "[REDACTED]"

    def test_reveal_sensitive(self):
        payload = {"password": "hunter2", "to": "ana@example.com"}
        assert sanitize_payload(payload, reveal_sensitive=True) == payload

    def test_nested_and_truncated(self):
        sanitized = sanitize_payload({"items": ["x" * 150, {"to": "luis@example.com"}]})
        assert sanitized["items"][0] == "x" * 100 + "..."
        assert sanitized["items"][1]["to"] == "lu***@example.com"

    def test_non_string_values_untouched(self):
        assert sanitize_payload({"count": 3, "ok": True}) == {"count": 3, "ok": True}


class TestStructuredLogger:

    def test_operation_format(self, caplog):
        test_logger = StructuredLogger("workspace_automation.test")
        with caplog.at_level(logging.INFO, logger="workspace_automation.test"):
            test_logger.log_operation("sweep.run", "success", {"checked": 3})
        assert "Operation: sweep.run, Status: success, Details: {'checked': 3}" in caplog.text

    def test_gateway_refusal_is_warning(self, caplog):
        test_logger = StructuredLogger("workspace_automation.test")
        with caplog.at_level(logging.INFO, logger="workspace_automation.test"):
            test_logger.log_gateway_call("notification", "send_plain", False, {"to": "ana@example.com"})
        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "gateway.notification.send_plain" in record.getMessage()
        assert "ana@example.com" not in record.getMessage()

    def test_trigger_error(self, caplog):
        test_logger = StructuredLogger("workspace_automation.test")
        with caplog.at_level(logging.INFO, logger="workspace_automation.test"):
            test_logger.log_trigger_error("edit", ValueError("bad row"), {"row": 4})
        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert "ValueError" in record.getMessage()
        assert "'row': 4" in record.getMessage()

    def test_audit_event(self, caplog):
        with caplog.at_level(logging.INFO, logger="workspace_automation"):
            audit_event("audit.UserAdded", {"user": "Ana"}, {"details": "Role: Editor, Group: IT"})
        assert "Operation: audit_UserAdded, Status: audit" in caplog.text
        assert "Role: Editor, Group: IT" in caplog.text
