# Vault Module - Local Password Vault
#
# Single master password, PBKDF2 key derivation, AES-256-GCM encryption
# of the whole entry set, session lock/unlock with inactivity auto-lock.

from .auto_lock import InactivityTimer
from .codec import VaultCodec
from .encryption import EncryptionService
from .exceptions import (
    AuthenticationFailed,
    EntryNotFound,
    InvalidCredentialsOrCorrupt,
    InvalidEntry,
    InvalidRecordFormat,
    PersistenceFailure,
    VaultAlreadyExists,
    VaultError,
    VaultLocked,
    VaultNotFound,
)
from .models import (
    Category,
    ChangeKind,
    Entry,
    EntryType,
    PasswordStrength,
    VaultEvent,
    VaultEventKind,
    VaultPayload,
    VaultRecord,
)
from .storage import MemoryVaultStore, SQLiteVaultStore, VaultStore
from .vault_manager import VaultManager

__all__ = [
    "VaultManager",
    "VaultCodec",
    "EncryptionService",
    "InactivityTimer",
    # Storage
    "VaultStore",
    "MemoryVaultStore",
    "SQLiteVaultStore",
    # Models
    "Category",
    "ChangeKind",
    "Entry",
    "EntryType",
    "PasswordStrength",
    "VaultEvent",
    "VaultEventKind",
    "VaultPayload",
    "VaultRecord",
    # Errors
    "VaultError",
    "AuthenticationFailed",
    "InvalidCredentialsOrCorrupt",
    "InvalidRecordFormat",
    "VaultLocked",
    "EntryNotFound",
    "PersistenceFailure",
    "VaultNotFound",
    "VaultAlreadyExists",
    "InvalidEntry",
]
