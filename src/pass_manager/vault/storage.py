# Vault Storage - key/value text store for the encrypted record
#
# The vault only ever hands this layer JSON text that is already
# encrypted. SQLiteVaultStore follows the user-preferences pattern:
# one small key/value table, fresh connection per call, WAL mode.

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

from .exceptions import PersistenceFailure

logger = logging.getLogger(__name__)


class VaultStore(ABC):
    """Durable key/value store of text values."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Durably store ``value`` under ``key`` (upsert)."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if it existed."""


class MemoryVaultStore(VaultStore):
    """Process-local store, for tests and ephemeral sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None


class SQLiteVaultStore(VaultStore):
    """SQLite key/value store.

    Args:
        db_path: Path to SQLite file. Defaults to data/vault.db.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path else Path("data/vault.db")
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_database()
        except (sqlite3.Error, OSError) as e:
            raise PersistenceFailure(f"Failed to open vault store: {e}") from e

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
        except sqlite3.Error:
            conn.close()
            raise
        conn.row_factory = sqlite3.Row
        return conn

    def _init_database(self):
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error("Vault store read failed for %s: %s", key, e)
            raise PersistenceFailure(f"Failed to read {key}: {e}") from e
        if row is None:
            return None
        return row["value"]

    def set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        try:
            conn = self._connect()
            try:
                conn.execute(
                    """INSERT INTO kv_store (key, value, updated_at)
                       VALUES (?, ?, ?)
                       ON CONFLICT(key) DO UPDATE SET
                           value = excluded.value,
                           updated_at = excluded.updated_at""",
                    (key, value, now),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error("Vault store write failed for %s: %s", key, e)
            raise PersistenceFailure(f"Failed to write {key}: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            conn = self._connect()
            try:
                cur = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                conn.commit()
                return cur.rowcount > 0
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.error("Vault store delete failed for %s: %s", key, e)
            raise PersistenceFailure(f"Failed to delete {key}: {e}") from e
