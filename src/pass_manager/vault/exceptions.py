"""
Vault Exception Classes
"""

GENERIC_UNLOCK_ERROR = "Invalid password or corrupted data"


class VaultError(Exception):
    """Base exception for vault operations"""
    pass


class AuthenticationFailed(VaultError):
    """Raised by the AEAD engine when the GCM tag does not verify"""
    pass


class InvalidCredentialsOrCorrupt(VaultError):
    """Wrong master password or tampered/corrupted vault data.

    Both cases share one error so the caller learns nothing about which
    one occurred.
    """

    def __init__(self, message: str = GENERIC_UNLOCK_ERROR):
        super().__init__(message)


class InvalidRecordFormat(VaultError):
    """Raised when a vault record fails structural validation"""
    pass


class VaultLocked(VaultError):
    """Raised when an operation needs an unlocked vault"""

    def __init__(self, message: str = "Vault is locked. Unlock vault first."):
        super().__init__(message)


class EntryNotFound(VaultError):
    """Raised when an entry id does not exist in the vault"""

    def __init__(self, entry_id: str):
        super().__init__(f"Entry not found: {entry_id}")
        self.entry_id = entry_id


class PersistenceFailure(VaultError):
    """Raised when the byte store fails to read or write"""
    pass


class VaultNotFound(VaultError):
    """Raised when no vault record is stored"""

    def __init__(self, message: str = "No vault found. Create a vault first."):
        super().__init__(message)


class VaultAlreadyExists(VaultError):
    """Raised when creating a vault over an existing one without overwrite"""

    def __init__(self, message: str = "Vault already exists. Use unlock() instead."):
        super().__init__(message)


class InvalidEntry(VaultError):
    """Raised when entry fields fail validation"""
    pass
