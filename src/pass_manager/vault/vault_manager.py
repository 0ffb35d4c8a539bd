# Vault Manager - Encrypted Password Vault Session
#
# Owns the single in-memory vault session: locked/unlocked state, the
# decrypted entries, the master password while unlocked, and the
# inactivity auto-lock. Every mutation re-encrypts the full entry list
# and writes it through the store before the in-memory state changes.

import json
import logging
import threading
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .auto_lock import InactivityTimer
from .codec import VaultCodec
from .encryption import EncryptionService
from .exceptions import (
    EntryNotFound,
    InvalidCredentialsOrCorrupt,
    InvalidEntry,
    InvalidRecordFormat,
    PersistenceFailure,
    VaultAlreadyExists,
    VaultLocked,
    VaultNotFound,
)
from .models import (
    Category,
    ChangeKind,
    Entry,
    EntryType,
    VaultEvent,
    VaultEventKind,
    VaultPayload,
    VaultRecord,
    format_timestamp,
    next_timestamp,
    normalize_fields,
    utcnow,
)
from .storage import VaultStore
from ..core import get_audit_logger, EventType, EventSeverity

logger = logging.getLogger(__name__)

STORAGE_KEY = "pass_manager.vault"
SETTINGS_KEY = "pass_manager.settings"

DEFAULT_AUTO_LOCK_TIMEOUT = 5 * 60.0  # seconds

_TEXT_ATTRS = (
    "url", "username", "password", "notes",
    "card_holder", "card_number", "card_expiry", "card_cvv", "note_content",
)

VaultObserver = Callable[[VaultEvent], None]


class VaultManager:
    """
    Manages the encrypted password vault session.

    States: locked (initial) and unlocked. While unlocked the manager holds
    the decrypted entries and the master password; lock() drops both.

    Concurrency:
    - An RLock serializes create/unlock/lock/import and every mutation, so
      two writers can never interleave a read-modify-write of the entries.
    - Mutations build a new list and swap it in after the write succeeds;
      reads grab the current list reference without taking the lock.
    - The auto-lock takes the same lock, so it waits for an in-flight
      operation. Activity recorded meanwhile cancels that auto-lock.

    Args:
        store: Byte store holding the encrypted record
        codec: Record codec (defaults to 600k PBKDF2 iterations)
        auto_lock_timeout: Inactivity timeout in seconds, 0 disables.
            Overrides the persisted setting when given.
    """

    def __init__(
        self,
        store: VaultStore,
        codec: Optional[VaultCodec] = None,
        auto_lock_timeout: Optional[float] = None,
    ):
        self.store = store
        self.codec = codec or VaultCodec()
        self.logger = get_audit_logger()

        self._lock = threading.RLock()
        self._record: Optional[VaultRecord] = None
        self._entries: Optional[List[Entry]] = None  # None while locked
        self._created_at: Optional[datetime] = None
        self._master_password: Optional[bytearray] = None
        self._last_activity: Optional[float] = None

        self._observers: List[VaultObserver] = []
        self._auto_lock_callback: Optional[Callable[[], None]] = None

        if auto_lock_timeout is None:
            auto_lock_timeout = self._load_settings().get(
                "autoLockTimeout", DEFAULT_AUTO_LOCK_TIMEOUT
            )
        if auto_lock_timeout < 0:
            raise ValueError("auto_lock_timeout must be >= 0")
        self._timer = InactivityTimer(float(auto_lock_timeout), self._on_inactivity)

    # ── State ────────────────────────────────────────────────────────

    @property
    def is_unlocked(self) -> bool:
        return self._entries is not None

    @property
    def auto_lock_timeout(self) -> float:
        return self._timer.timeout

    @property
    def last_activity(self) -> Optional[float]:
        """time.monotonic() of the last activity signal, if any."""
        return self._last_activity

    def has_vault(self) -> bool:
        """True if a structurally valid record is stored."""
        try:
            return self._load_record() is not None
        except InvalidRecordFormat:
            return False

    # ── Observers ────────────────────────────────────────────────────

    def subscribe(self, observer: VaultObserver) -> None:
        """Register a callback for unlock/lock/entry-change events."""
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: VaultObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def set_auto_lock_callback(self, callback: Optional[Callable[[], None]]) -> None:
        """Callback fired only when the inactivity timer locks the vault."""
        self._auto_lock_callback = callback

    def _emit(self, event: VaultEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.exception("Vault observer failed for %s", event.kind.value)

    # ── Persistence ──────────────────────────────────────────────────

    def _load_record(self) -> Optional[VaultRecord]:
        raw = self.store.get(STORAGE_KEY)
        if raw is None:
            return None
        try:
            envelope = json.loads(raw)
        except ValueError:
            raise InvalidRecordFormat("Stored vault is not valid JSON") from None
        if not isinstance(envelope, dict) or "vault" not in envelope:
            raise InvalidRecordFormat("Stored vault envelope is malformed")
        return self.codec.parse_record(envelope["vault"])

    def _save_record(self, record: VaultRecord) -> None:
        envelope = {
            "vault": record.to_dict(),
            "lastModified": format_timestamp(utcnow()),
        }
        self.store.set(STORAGE_KEY, json.dumps(envelope))

    def _load_settings(self) -> Dict[str, Any]:
        try:
            raw = self.store.get(SETTINGS_KEY)
            settings = json.loads(raw) if raw else {}
        except (PersistenceFailure, ValueError) as e:
            logger.warning("Ignoring unreadable vault settings: %s", e)
            return {}
        if not isinstance(settings, dict):
            return {}
        timeout = settings.get("autoLockTimeout")
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout < 0:
            settings.pop("autoLockTimeout", None)
        return settings

    # ── Lifecycle ────────────────────────────────────────────────────

    def create_vault(self, master_password: str, overwrite: bool = False) -> None:
        """
        Create a new, empty vault and unlock it.

        Args:
            master_password: User's master password
            overwrite: Destroy an existing vault (re-initialization)

        Raises:
            VaultAlreadyExists: A record is stored and overwrite is False
            PersistenceFailure: The store could not write the record
        """
        if not master_password:
            raise ValueError("Master password must not be empty")

        with self._lock:
            if self.store.get(STORAGE_KEY) is not None and not overwrite:
                raise VaultAlreadyExists()

            payload = VaultPayload()
            record = self.codec.create_record(master_password, payload)
            try:
                self._save_record(record)
            except PersistenceFailure as e:
                self._log_error("Failed to create vault", e)
                raise

            self._clear_session()
            self._enter_unlocked(record, [], payload.created_at, master_password)

            self.logger.log_vault_event(
                EventType.VAULT_CREATED,
                "Vault initialized with master password",
                details={"overwrite": overwrite, "iterations": record.iterations},
            )
            self._emit(VaultEvent(VaultEventKind.UNLOCKED))

    def unlock(self, master_password: str) -> List[Entry]:
        """
        Unlock the stored vault.

        Returns:
            The decrypted entries, most recently modified first

        Raises:
            VaultNotFound: Nothing stored yet
            InvalidRecordFormat: Stored record is structurally broken
            InvalidCredentialsOrCorrupt: Wrong password or tampered data
        """
        with self._lock:
            record = self._load_record()
            if record is None:
                raise VaultNotFound()

            try:
                payload = self.codec.open_record(master_password, record)
            except InvalidCredentialsOrCorrupt:
                self.logger.log_vault_event(
                    EventType.VAULT_UNLOCK_FAILED,
                    "Unlock failed: invalid password or corrupted data",
                    severity=EventSeverity.INVESTIGATE,
                )
                raise

            self._clear_session()
            self._enter_unlocked(record, payload.entries, payload.created_at, master_password)

            self.logger.log_vault_event(
                EventType.VAULT_UNLOCKED,
                "Vault unlocked",
                details={"entries": len(payload.entries)},
            )
            self._emit(VaultEvent(VaultEventKind.UNLOCKED))
            return self.list_entries()

    def lock(self) -> None:
        """Lock the vault: drop entries and master password."""
        with self._lock:
            self._lock_session(auto=False)

    def shutdown(self) -> None:
        """Lock and stop the auto-lock thread."""
        self.lock()
        self._timer.stop()

    def _enter_unlocked(
        self,
        record: VaultRecord,
        entries: List[Entry],
        created_at: datetime,
        master_password: str,
    ) -> None:
        self._record = record
        self._entries = list(entries)
        self._created_at = created_at
        self._master_password = bytearray(master_password.encode("utf-8"))
        self.record_activity()

    def _clear_session(self) -> None:
        if self._master_password is not None:
            # Best effort: overwrite the mutable copy before dropping it
            for i in range(len(self._master_password)):
                self._master_password[i] = 0
        self._master_password = None
        self._entries = None
        self._created_at = None
        self._record = None
        self._timer.cancel()

    def _lock_session(self, auto: bool) -> bool:
        if not self.is_unlocked:
            return False
        self._clear_session()

        if auto:
            self.logger.log_vault_event(
                EventType.VAULT_AUTO_LOCKED,
                "Vault locked after inactivity",
                details={"timeout_seconds": self._timer.timeout},
            )
        else:
            self.logger.log_vault_event(EventType.VAULT_LOCKED, "Vault locked")

        self._emit(VaultEvent(VaultEventKind.LOCKED, auto=auto))
        if auto and self._auto_lock_callback is not None:
            try:
                self._auto_lock_callback()
            except Exception:
                logger.exception("Auto-lock callback failed")
        return True

    # ── Auto-lock ────────────────────────────────────────────────────

    def record_activity(self) -> None:
        """User activity signal (input, pointer, scroll). Re-arms auto-lock."""
        self._last_activity = time.monotonic()
        if self.is_unlocked and self._timer.timeout > 0:
            self._timer.touch()

    def _on_inactivity(self) -> None:
        # Waits here for any in-flight operation holding the lock
        with self._lock:
            if not self.is_unlocked or self._timer.timeout == 0:
                return
            if self._timer.is_armed:
                return  # activity arrived while we waited
            self._lock_session(auto=True)

    # ── Settings ─────────────────────────────────────────────────────

    def get_settings(self) -> Dict[str, Any]:
        return {"autoLockTimeout": self._timer.timeout}

    def update_settings(self, auto_lock_timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Persist and apply user settings.

        Args:
            auto_lock_timeout: Seconds of inactivity before auto-lock, 0 disables

        Raises:
            ValueError: Negative timeout
            PersistenceFailure: Settings could not be written
        """
        with self._lock:
            if auto_lock_timeout is not None:
                if auto_lock_timeout < 0:
                    raise ValueError("auto_lock_timeout must be >= 0")
                settings = self._load_settings()
                settings["autoLockTimeout"] = float(auto_lock_timeout)
                self.store.set(SETTINGS_KEY, json.dumps(settings))

                if auto_lock_timeout == 0:
                    self._timer.cancel()
                self._timer.set_timeout(float(auto_lock_timeout))
                if auto_lock_timeout > 0 and self.is_unlocked:
                    self._timer.touch()

                self.logger.log_vault_event(
                    EventType.VAULT_SETTINGS_CHANGED,
                    "Auto-lock timeout changed",
                    details={"auto_lock_timeout": float(auto_lock_timeout)},
                )
            return self.get_settings()

    # ── Entry CRUD ───────────────────────────────────────────────────

    def _require_unlocked(self) -> List[Entry]:
        entries = self._entries
        if entries is None:
            raise VaultLocked()
        return entries

    def _validate_fields(self, raw: Mapping[str, Any], partial: bool) -> Dict[str, Any]:
        try:
            attrs = normalize_fields(raw)
        except ValueError as e:
            raise InvalidEntry(str(e)) from None

        if "type" in attrs:
            try:
                attrs["type"] = EntryType(attrs["type"])
            except ValueError:
                raise InvalidEntry(f"Invalid entry type: {attrs['type']!r}") from None
        elif not partial:
            attrs["type"] = EntryType.LOGIN

        if "title" in attrs or not partial:
            title = attrs.get("title")
            if not isinstance(title, str) or not title.strip():
                raise InvalidEntry("Entry title is required")
            attrs["title"] = title.strip()

        if "favorite" in attrs:
            if not isinstance(attrs["favorite"], bool):
                raise InvalidEntry("favorite must be a boolean")

        for attr in _TEXT_ATTRS:
            value = attrs.get(attr)
            if value is not None and not isinstance(value, str):
                raise InvalidEntry(f"{attr} must be a string")

        return attrs

    def _commit(self, entries: List[Entry]) -> None:
        """Re-encrypt and persist the full list, then make it current."""
        payload = VaultPayload(entries=entries, created_at=self._created_at)
        try:
            record = self.codec.update_record(self._master_password, self._record, payload)
            self._save_record(record)
        except PersistenceFailure as e:
            self._log_error("Failed to save vault", e)
            raise
        self._record = record
        self._entries = entries

    def _new_id(self, entries: List[Entry]) -> str:
        existing = {entry.id for entry in entries}
        while True:
            entry_id = EncryptionService.generate_id()
            if entry_id not in existing:
                return entry_id

    def _index_of(self, entries: List[Entry], entry_id: str) -> int:
        for index, entry in enumerate(entries):
            if entry.id == entry_id:
                return index
        raise EntryNotFound(entry_id)

    def add_entry(self, fields: Mapping[str, Any]) -> Entry:
        """
        Add a new entry and persist the vault.

        Args:
            fields: Entry fields (camelCase or snake_case); type defaults
                to login, title is required

        Raises:
            VaultLocked, InvalidEntry, PersistenceFailure
        """
        with self._lock:
            entries = self._require_unlocked()
            attrs = self._validate_fields(fields, partial=False)
            now = utcnow()
            entry = Entry(id=self._new_id(entries), created_at=now, modified_at=now, **attrs)

            self._commit(entries + [entry])

            self.logger.log_vault_event(
                EventType.VAULT_ENTRY_ADDED,
                "Entry added",
                details={"entry_id": entry.id, "type": entry.type.value},
            )
            self._emit(VaultEvent(VaultEventKind.ENTRY_CHANGED, entry.id, ChangeKind.ADDED))
            self.record_activity()
            return replace(entry)

    def update_entry(self, entry_id: str, patch: Mapping[str, Any]) -> Entry:
        """
        Merge ``patch`` into an entry; modifiedAt always advances.

        Raises:
            VaultLocked, EntryNotFound, InvalidEntry, PersistenceFailure
        """
        with self._lock:
            entries = self._require_unlocked()
            index = self._index_of(entries, entry_id)
            attrs = self._validate_fields(patch, partial=True)

            current = entries[index]
            updated = replace(current, modified_at=next_timestamp(current.modified_at), **attrs)
            new_entries = list(entries)
            new_entries[index] = updated

            self._commit(new_entries)

            self.logger.log_vault_event(
                EventType.VAULT_ENTRY_UPDATED,
                "Entry updated",
                details={"entry_id": entry_id, "fields": sorted(attrs)},
            )
            self._emit(VaultEvent(VaultEventKind.ENTRY_CHANGED, entry_id, ChangeKind.UPDATED))
            self.record_activity()
            return replace(updated)

    def delete_entry(self, entry_id: str) -> None:
        """
        Remove an entry and persist the vault.

        Raises:
            VaultLocked, EntryNotFound, PersistenceFailure
        """
        with self._lock:
            entries = self._require_unlocked()
            index = self._index_of(entries, entry_id)
            self._commit(entries[:index] + entries[index + 1:])

            self.logger.log_vault_event(
                EventType.VAULT_ENTRY_DELETED,
                "Entry deleted",
                details={"entry_id": entry_id},
            )
            self._emit(VaultEvent(VaultEventKind.ENTRY_CHANGED, entry_id, ChangeKind.DELETED))
            self.record_activity()

    # ── Reads ────────────────────────────────────────────────────────

    def get_entry(self, entry_id: str) -> Optional[Entry]:
        """Entry by id, or None. Raises VaultLocked while locked."""
        for entry in self._require_unlocked():
            if entry.id == entry_id:
                return replace(entry)
        return None

    def require_entry(self, entry_id: str) -> Entry:
        entry = self.get_entry(entry_id)
        if entry is None:
            raise EntryNotFound(entry_id)
        return entry

    def list_entries(
        self,
        category: Union[Category, str] = Category.ALL,
        query: Optional[str] = None,
    ) -> List[Entry]:
        """
        Entries in a category, optionally narrowed by a search query,
        most recently modified first.
        """
        category = Category(category)
        selected = [e for e in self._require_unlocked() if e.in_category(category)]
        if query:
            needle = query.lower()
            selected = [e for e in selected if e.matches(needle)]
        selected.sort(key=lambda e: e.modified_at, reverse=True)
        return [replace(e) for e in selected]

    def list_by_category(self, category: Union[Category, str]) -> List[Entry]:
        return self.list_entries(category=category)

    def search(
        self,
        query: str,
        category: Union[Category, str] = Category.ALL,
    ) -> List[Entry]:
        """Case-insensitive search over title, username, url, notes,
        card holder and note content."""
        return self.list_entries(category=category, query=query)

    def get_counts(self) -> Dict[str, int]:
        entries = self._require_unlocked()
        return {
            category.value: sum(1 for e in entries if e.in_category(category))
            for category in Category
        }

    # ── Import / export ──────────────────────────────────────────────

    def export_vault(self) -> str:
        """
        Stored record as export-file JSON (still encrypted).

        Raises:
            VaultNotFound: Nothing stored yet
        """
        record = self._load_record()
        if record is None:
            raise VaultNotFound("No vault to export")
        self.logger.log_vault_event(EventType.VAULT_EXPORTED, "Vault exported")
        return self.codec.dumps_record(record)

    def import_vault(self, content: str, master_password: str) -> List[Entry]:
        """
        Replace the stored vault with an exported file and unlock it.

        The file is validated and decrypted with ``master_password`` before
        anything is written; on any failure the current vault and session
        are left untouched.

        Raises:
            InvalidRecordFormat, InvalidCredentialsOrCorrupt, PersistenceFailure
        """
        with self._lock:
            try:
                record = self.codec.parse_vault_file(content)
                payload = self.codec.open_record(master_password, record)
            except (InvalidRecordFormat, InvalidCredentialsOrCorrupt) as e:
                self.logger.log_vault_event(
                    EventType.VAULT_IMPORT_FAILED,
                    "Vault import rejected",
                    details={"reason": type(e).__name__},
                    severity=EventSeverity.INVESTIGATE,
                )
                raise

            try:
                self._save_record(record)
            except PersistenceFailure as e:
                self._log_error("Failed to store imported vault", e)
                raise

            self._clear_session()
            self._enter_unlocked(record, payload.entries, payload.created_at, master_password)

            self.logger.log_vault_event(
                EventType.VAULT_IMPORTED,
                "Vault imported from file",
                details={"entries": len(payload.entries)},
                severity=EventSeverity.ALERT,
            )
            self._emit(VaultEvent(VaultEventKind.UNLOCKED))
            return self.list_entries()

    def reload_from_store(self) -> None:
        """
        The stored record was replaced from outside (e.g. sync).

        Locks the session so the next unlock reads the new record.
        """
        with self._lock:
            self._lock_session(auto=False)
            self.logger.log_vault_event(EventType.VAULT_RELOADED, "Vault reloaded from store")

    def clear_all(self) -> None:
        """Delete the vault and settings from the store (irreversible)."""
        with self._lock:
            self._lock_session(auto=False)
            self.store.delete(STORAGE_KEY)
            self.store.delete(SETTINGS_KEY)
            self.logger.log_vault_event(
                EventType.VAULT_CLEARED,
                "Vault and settings deleted",
                severity=EventSeverity.ALERT,
            )

    def _log_error(self, message: str, error: Exception) -> None:
        self.logger.log_event(
            event_type=EventType.VAULT_ERROR,
            severity=EventSeverity.CRITICAL,
            message=f"{message}: {error}",
        )
