# Vault - Audit Logging
#
# Append-only structured log of every vault security event: creation,
# unlock attempts, locks (manual and automatic), entry changes, imports.
# Events carry ids and categories only; passwords and entry contents are
# never written to the log.

import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of security events that can be logged."""
    # Vault lifecycle
    VAULT_CREATED = "vault.created"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_LOCKED = "vault.locked"
    VAULT_AUTO_LOCKED = "vault.auto_locked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_CLEARED = "vault.cleared"
    VAULT_RELOADED = "vault.reloaded"

    # Entry changes
    VAULT_ENTRY_ADDED = "vault.entry.added"
    VAULT_ENTRY_UPDATED = "vault.entry.updated"
    VAULT_ENTRY_DELETED = "vault.entry.deleted"

    # File transfer
    VAULT_IMPORTED = "vault.imported"
    VAULT_IMPORT_FAILED = "vault.import.failed"
    VAULT_EXPORTED = "vault.exported"

    VAULT_SETTINGS_CHANGED = "vault.settings.changed"
    VAULT_ERROR = "vault.error"

    # System Events
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    """
    Severity levels for security events.

    - INFO: Normal activity (logged only)
    - INVESTIGATE: Something unusual, e.g. a failed unlock
    - ALERT: Destructive or security-relevant action (import, clear)
    - CRITICAL: Operation failed and the user must act
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for vault security events.

    Features:
    - Structured JSON logging (structlog)
    - Automatic timestamp and event ID
    - OS user / host context capture
    - One log file per day
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
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._file_handler = self._setup_file_handler()
        self.logger = structlog.get_logger("pass_manager.audit")

    def _setup_file_handler(self) -> logging.Handler:
        """Attach a daily log file to the audit logger."""
        today = datetime.now().strftime("%Y-%m-%d")
        log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog formats

        audit_logger = logging.getLogger("pass_manager.audit")
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)
        return file_handler

    def close(self) -> None:
        """Detach and close the file handler."""
        logging.getLogger("pass_manager.audit").removeHandler(self._file_handler)
        self._file_handler.close()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Log a security event (append-only).

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

        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
            "user_context": user_context or self._get_default_user_context(),
        }

        self.logger.info("security_event", **event_data)
        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> str:
        """
        Log a Vault security event.

        Args:
            event_type: Type of Vault event
            message: Event description
            details: Additional details (never log actual passwords!)
            severity: Defaults to INFO

        Returns:
            str: Event ID
        """
        return self.log_event(
            event_type=event_type,
            severity=severity,
            message=f"Vault: {message}",
            details=details
        )

    def _get_default_user_context(self) -> Dict[str, Any]:
        """Get default user context (OS user, hostname, etc.)."""
        import socket
        import os

        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(log_dir: Optional[Path] = None) -> AuditLogger:
    """Replace the global audit logger with one writing to ``log_dir``."""
    global _audit_logger
    if _audit_logger is not None:
        _audit_logger.close()
    _audit_logger = AuditLogger(log_dir=log_dir)
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging security events.

    Usage:
        log_security_event(
            EventType.VAULT_UNLOCK_FAILED,
            EventSeverity.INVESTIGATE,
            "Unlock rejected",
            details={"reason": "invalid_credentials"}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
