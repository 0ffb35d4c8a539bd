"""Tests for the vault key/value stores."""

import json
import sqlite3
from unittest.mock import MagicMock, patch

import pytest

from pass_manager.vault import (
    MemoryVaultStore,
    PersistenceFailure,
    SQLiteVaultStore,
    VaultManager,
)


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLiteVaultStore(tmp_path / "data" / "vault.db")


class TestSQLiteVaultStore:

    def test_creates_parent_directory(self, tmp_path):
        SQLiteVaultStore(tmp_path / "nested" / "dir" / "vault.db")
        assert (tmp_path / "nested" / "dir" / "vault.db").exists()

    def test_get_missing(self, sqlite_store):
        assert sqlite_store.get("absent") is None

    def test_set_get_overwrite(self, sqlite_store):
        sqlite_store.set("k", "one")
        assert sqlite_store.get("k") == "one"
        sqlite_store.set("k", "two")
        assert sqlite_store.get("k") == "two"

    def test_delete(self, sqlite_store):
        sqlite_store.set("k", "v")
        assert sqlite_store.delete("k") is True
        assert sqlite_store.get("k") is None
        assert sqlite_store.delete("k") is False

    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "vault.db"
        SQLiteVaultStore(path).set("k", json.dumps({"a": 1}))
        assert json.loads(SQLiteVaultStore(path).get("k")) == {"a": 1}

    def test_unusable_path(self, tmp_path):
        with pytest.raises(PersistenceFailure):
            SQLiteVaultStore(tmp_path)

    def test_manager_roundtrip(self, tmp_path, fast_codec):
        path = tmp_path / "vault.db"
        mgr = VaultManager(SQLiteVaultStore(path), codec=fast_codec, auto_lock_timeout=0)
        mgr.create_vault("Tr0ub4dor&3")
        entry = mgr.add_entry({"title": "Example", "username": "alice"})
        mgr.shutdown()

        reopened = VaultManager(SQLiteVaultStore(path), codec=fast_codec, auto_lock_timeout=0)
        try:
            assert reopened.has_vault()
            entries = reopened.unlock("Tr0ub4dor&3")
            assert [e.id for e in entries] == [entry.id]
        finally:
            reopened.shutdown()

    def test_stored_value_is_encrypted(self, tmp_path, fast_codec):
        path = tmp_path / "vault.db"
        mgr = VaultManager(SQLiteVaultStore(path), codec=fast_codec, auto_lock_timeout=0)
        mgr.create_vault("Tr0ub4dor&3")
        mgr.add_entry({"title": "Bank", "password": "hunter2"})
        mgr.shutdown()

        raw = b"".join(p.read_bytes() for p in tmp_path.glob("vault.db*"))
        assert b"hunter2" not in raw
        assert b"Bank" not in raw


    def test_connection_closed_when_setup_fails(self, sqlite_store):
        conn = MagicMock()
        conn.execute.side_effect = sqlite3.OperationalError("database is locked")
        with patch("pass_manager.vault.storage.sqlite3.connect", return_value=conn):
            with pytest.raises(PersistenceFailure):
                sqlite_store.get("k")
        conn.close.assert_called_once()


class TestMemoryVaultStore:

    def test_basic(self):
        store = MemoryVaultStore({"seed": "x"})
        assert store.get("seed") == "x"
        store.set("k", "v")
        assert store.get("k") == "v"
        assert store.delete("k") is True
        assert store.delete("k") is False
        assert store.get("k") is None
