"""
Structured audit logging for migration, rollback and dual-read operations.
"""

import logging
from typing import Any, Dict, List

# Fields whose values never reach the log verbatim
SENSITIVE_FIELDS = ['workspace', 'xml', 'content', 'email', 'bio', 'secret', 'password', 'token']


class StructuredLogger:
    """Structured logger for migration operations."""

    def __init__(self, name: str = "datamigrate"):
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

        if status in ("failed", "rejected"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_migration_started(self, user_id: str, migration_id: str, sections: List[str]):
        """Log the start of a user migration."""
        self.log_operation("migration.start", "running", {
            "user_id": user_id,
            "migration_id": migration_id,
            "sections": sections
        })

    def log_migration_completed(self, user_id: str, migration_id: str, migrated: int, error_count: int):
        """Log the aggregate outcome of a user migration."""
        status = "success" if error_count == 0 else "partial"
        if migrated == 0 and error_count > 0:
            status = "failed"
        self.log_operation("migration.complete", status, {
            "user_id": user_id,
            "migration_id": migration_id,
            "migrated": migrated,
            "error_count": error_count
        })

    def log_migration_rejected(self, user_id: str, reason: str):
        """Log a migration stopped at a gate (auth, integrity, duplicate)."""
        self.log_operation("migration.gate", "rejected", {"user_id": user_id, "reason": reason})

    def log_resource_failure(self, kind: str, user_id: str, error: str, resource_id: str = None):
        """Log a single sub-resource failure inside a migration."""
        details = {"kind": kind, "user_id": user_id, "error": error[:100]}
        if resource_id:
            details["resource_id"] = resource_id
        self.log_operation(f"migration.{kind}", "failed", details)

    def log_rollback(self, user_id: str, migration_id: str, counts: Dict[str, int], actor: str):
        """Log a migration rollback."""
        details = {"user_id": user_id, "migration_id": migration_id, "actor": actor}
        details.update(counts)
        self.log_operation("migration.rollback", "success", details)

    def log_dual_read(self, kind: str, user_id: str, source: str, details: Dict[str, Any] = None):
        """Log which store served a dual-read."""
        log_details = {"kind": kind, "user_id": user_id, "source": source}
        if details:
            log_details.update(details)
        self.log_operation("dual_read", "served", log_details)

    def log_validation_error(self, operation: str, errors: List[Any], source_record: Dict[str, Any] = None):
        """Log validation errors with sanitized details."""
        sanitized_errors = []
        for error in errors:
            if isinstance(error, dict):
                sanitized_error = error.copy()
                if 'input' in sanitized_error:
                    sanitized_error['input'] = "[REDACTED]"
                sanitized_errors.append(sanitized_error)
            else:
                sanitized_errors.append(str(error)[:100])

        log_details = {
            "operation": operation,
            "errors": sanitized_errors,
            "error_count": len(sanitized_errors)
        }

        if source_record and "id" in source_record:
            log_details["target_identifier"] = source_record["id"]

        self.log_operation("validation.error", "rejected", log_details)

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
    """General audit event logging with privacy controls."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        sanitized_payload = {}
        for k, v in payload.items():
            if k not in sensitive_fields:
                if isinstance(v, str) and len(v) > 100:
                    sanitized_payload[k] = v[:97] + "..."
                else:
                    sanitized_payload[k] = v
            else:
                sanitized_payload[k] = "[REDACTED]"
        log_details["payload"] = sanitized_payload

    if event_type.startswith("migration"):
        operation = "migration_audit"
    elif event_type.startswith("rollback"):
        operation = "rollback_audit"
    elif event_type.startswith("auth"):
        operation = "auth_audit"
    else:
        operation = event_type.replace(".", "_")

    logger.log_operation(operation, "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads (legacy bundles, records) for audit logging."""
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
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload
