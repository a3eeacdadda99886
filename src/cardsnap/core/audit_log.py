# Core Module - Audit Logging
#
# Append-only JSON audit trail for vault operations: every backup created,
# archive validated, restore committed/rejected/failed ends up here with a
# timestamp, an event id and host context.
#
# Never log passwords, keys or card payloads. Ids, counts, strategies and
# error codes only.

import json
import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

import structlog

_AUDIT_LOGGER_NAME = "cardsnap.audit"


class EventType(str, Enum):
    """Types of vault events that can be logged."""

    # Backup Events
    BACKUP_CREATED = "backup.created"
    BACKUP_VALIDATED = "backup.validated"
    BACKUP_FAILED = "backup.failed"

    # Restore Events
    RESTORE_COMMITTED = "restore.committed"
    RESTORE_PENDING_CONFLICTS = "restore.pending_conflicts"
    RESTORE_FAILED = "restore.failed"
    RESTORE_CANCELLED = "restore.cancelled"

    # Concurrency
    OPERATION_REJECTED = "operation.rejected"

    # API Access
    API_AUTH_REJECTED = "api.auth_rejected"

    # System Events
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    """
    Severity levels for vault events.

    - INFO: Normal activity (backup made, restore committed)
    - INVESTIGATE: Needs a user decision (merge conflicts)
    - ALERT: Something was rejected (bad password, tampered archive)
    - CRITICAL: Store could not be written
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for vault events.

    Features:
    - Structured JSON logging (structlog)
    - Automatic timestamp and event ID
    - Host context capture
    - Daily log files (audit_YYYY-MM-DD.log)
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._setup_file_handler()
        self.logger = structlog.get_logger(_AUDIT_LOGGER_NAME)

    def _setup_file_handler(self):
        """Attach a file handler for today's log, replacing any previous one."""
        today = datetime.now().strftime("%Y-%m-%d")
        self.log_file = self.log_dir / f"audit_{today}.log"

        stdlib_logger = logging.getLogger(_AUDIT_LOGGER_NAME)
        for handler in list(stdlib_logger.handlers):
            if isinstance(handler, logging.FileHandler):
                stdlib_logger.removeHandler(handler)
                handler.close()

        file_handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(message)s"))  # structlog formats

        stdlib_logger.addHandler(file_handler)
        stdlib_logger.setLevel(logging.INFO)
        # Audit lines stay out of the application log
        stdlib_logger.propagate = False

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log a vault event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (never secrets)
            user_context: User context (defaults to OS user and hostname)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())
        self.logger.info(
            "security_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details or {},
            user_context=user_context or self._get_default_user_context(),
        )
        return event_id

    def _get_default_user_context(self) -> Dict[str, Any]:
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }

    def query_events(
        self,
        event_types: Optional[List[EventType]] = None,
        severity: Optional[EventSeverity] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """
        Read back events from the daily log files, newest last.

        Args:
            event_types: Filter by event types
            severity: Filter by severity level
            limit: Maximum number of events to return
        """
        wanted = {t.value for t in event_types} if event_types else None
        events: List[Dict[str, Any]] = []
        for log_file in sorted(self.log_dir.glob("audit_*.log")):
            with open(log_file, encoding="utf-8") as fh:
                for line in fh:
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if entry.get("event") != "security_event":
                        continue
                    if wanted is not None and entry.get("event_type") not in wanted:
                        continue
                    if severity is not None and entry.get("severity") != severity.value:
                        continue
                    events.append(entry)
        return events[-limit:] if limit else events


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(log_dir: Path) -> AuditLogger:
    """Point the global audit logger at *log_dir* (used by the CLI and app startup)."""
    global _audit_logger
    _audit_logger = AuditLogger(log_dir)
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging vault events.

    Usage:
        log_security_event(
            EventType.RESTORE_FAILED,
            EventSeverity.ALERT,
            "Restore rejected",
            details={"error": "checksum_mismatch", "record_id": "card-7"}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
