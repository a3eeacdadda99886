# Core Module - Shared Utilities
#
# Core module provides shared functionality across CardSnap modules:
# - Audit logging
# - Error taxonomy
# - SQLite connection helpers
# - Configuration (cardsnap.core.config)

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    log_security_event,
)
from .errors import VaultError

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "log_security_event",
    # Errors
    "VaultError",
]
