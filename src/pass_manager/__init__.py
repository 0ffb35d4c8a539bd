# Pass Manager - Main Package
#
# Local password vault: a single master password protects an encrypted
# set of logins, cards and notes (PBKDF2 + AES-256-GCM).

__version__ = "1.0.0"
__author__ = "Pass Manager Team"
__description__ = "Client-side encrypted password vault"

from .core import (
    EventType,
    EventSeverity,
    get_audit_logger,
)
from .vault import VaultManager, VaultCodec, EncryptionService

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "VaultManager",
    "VaultCodec",
    "EncryptionService",
]
