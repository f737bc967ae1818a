"""
Structured logging for registry automation - lifecycle events, gateway calls,
sweep runs and trigger failures.
"""

import logging
import re
from typing import Any, Dict, List

_EMAIL_PATTERN = re.compile(r"([^\s@]{1,2})[^\s@]*@([^\s@]+)")


class StructuredLogger:
    """Structured logger for registry automation operations."""

    def __init__(self, name: str = "workspace_automation"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_lifecycle_event(self, event_kind: str, user: str, status: str = "processed", details: Dict[str, Any] = None):
        """Log a classified lifecycle event and its processing outcome."""
        log_details = {"user": user}
        if details:
            log_details.update(details)

        self.log_operation(f"lifecycle.{event_kind}", status, log_details)

    def log_gateway_call(self, gateway: str, operation: str, success: bool, details: Dict[str, Any] = None):
        """Log a notification or scheduling gateway call."""
        log_details = {}
        if details:
            log_details.update(sanitize_payload(details))

        status = "success" if success else "refused"
        level = logging.INFO if success else logging.WARNING
        self.log_operation(f"gateway.{gateway}.{operation}", status, log_details, level=level)

    def log_sweep_run(self, checked: int, deactivated: int, digest_sent: bool, duration_ms: float = None, status: str = "success"):
        """Log a completed (or skipped) inactivity sweep."""
        log_details = {
            "checked": checked,
            "deactivated": deactivated,
            "digest_sent": digest_sent
        }
        if duration_ms is not None:
            log_details["duration_ms"] = round(duration_ms, 2)

        self.log_operation("sweep.run", status, log_details)

    def log_trigger_error(self, trigger: str, error: Exception, details: Dict[str, Any] = None):
        """Log a failure inside an edit or time trigger."""
        log_details = {
            "trigger": trigger,
            "error_type": type(error).__name__,
            "error": str(error)[:200]
        }
        if details:
            log_details.update(details)

        self.log_operation("trigger.error", "failed", log_details, level=logging.ERROR)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def mask_email(text: str) -> str:
    """Keep the first characters of the local part and the domain: jo***@example.com."""
    return _EMAIL_PATTERN.sub(lambda m: f"{m.group(1)}***@{m.group(2)}", text)


# Payload sanitization utility
def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for logging: redact secrets, mask addresses, truncate."""
    if sensitive_fields is None:
        sensitive_fields = ['password', 'secret', 'token', 'body', 'html_body']

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        text = payload if reveal_sensitive else mask_email(payload)
        # Truncate long strings
        return text[:100] + "..." if len(text) > 100 else text
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None):
    """General audit-trail log line with privacy controls."""
    log_details = sanitize_payload(identifiers) if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)
