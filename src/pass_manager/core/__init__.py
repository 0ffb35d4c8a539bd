# Core Module - Shared Utilities
#
# Core module provides shared functionality across the package:
# - Audit logging
# - Configuration

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    configure_audit_logger,
    get_audit_logger,
    log_security_event,
)
from .config import AppConfig

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "log_security_event",
    "configure_audit_logger",
    # Configuration
    "AppConfig",
]
