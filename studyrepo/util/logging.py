"""
Structured logging for store writes, audits, workspace events and inbox transitions.
Dataset bodies never reach the log: payloads go through sanitize_payload first.
"""

import logging
from typing import Any, Dict, List

# Fields that may carry dataset bodies or free text from submitters
SENSITIVE_FIELDS = ['data', 'body', 'content', 'items', 'payload', 'original_question']


class StructuredLogger:
    """Structured logger for repository operations."""

    def __init__(self, name: str = "studyrepo"):
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

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error"):
            self.logger.error(message)
        else:
            self.logger.info(message)

    def log_store_write(self, path: str, kind: str, status: str = "success", details: Dict[str, Any] = None):
        """Log an atomic write to the content store."""
        log_details = {"path": str(path), "kind": kind}
        if details:
            log_details.update(details)

        self.log_operation(f"store.write.{kind}", status, log_details)

    def log_audit_result(self, content_type: str, report: Any, source: str = "api"):
        """Log the outcome of a content audit with per-severity counts."""
        counts = {"Blocker": 0, "Major": 0, "Minor": 0}
        for issue in report.issues:
            counts[issue.severity] = counts.get(issue.severity, 0) + 1

        log_details = {
            "content_type": content_type,
            "protocol_score": report.protocol_score,
            "teaching_score": report.teaching_score,
            "issue_counts": counts,
            "source": source
        }
        status = "passed" if report.overall_pass else "rejected"
        self.log_operation("audit.result", status, log_details)

    def log_workspace_event(self, workspace_id: str, action: str, status: str = "success", details: Dict[str, Any] = None):
        """Log workspace lifecycle events."""
        log_details = {"workspace_id": workspace_id, "action": action}
        if details:
            log_details.update(details)

        self.log_operation(f"workspace.{action}", status, log_details)

    def log_inbox_transition(self, record_id: str, from_status: str, to_status: str, actor: str, target: str = None):
        """Log an inbox record state change."""
        log_details = {
            "record_id": record_id,
            "from": from_status,
            "to": to_status,
            "actor": actor
        }
        if target:
            log_details["target"] = target

        self.log_operation("inbox.transition", to_status, log_details)

    def log_transition_blocked(self, record_id: str, action: str, actor: str, reason: str):
        """Log an inbox transition refused by a guard."""
        log_details = {
            "record_id": record_id,
            "action": action,
            "actor": actor,
            "reason": reason[:100] if reason else ""
        }
        self.log_operation("inbox.blocked", "refused", log_details)

    def log_drift_finding(self, finding_type: str, location: str, file_name: str, details: Dict[str, Any] = None):
        """Log catalog drift findings."""
        log_details = {
            "finding_type": finding_type,
            "location": location,
            "file": file_name
        }
        if details:
            log_details.update(details)

        self.log_operation("drift.finding", "detected", log_details)

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


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """General audit event logging with body redaction."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    if event_type.startswith("inbox"):
        operation = "inbox"
    elif event_type.startswith("audit"):
        operation = "audit"
    elif event_type.startswith("workspace"):
        operation = "workspace"
    else:
        operation = event_type.replace(".", "_")

    logger.log_operation(operation, "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
