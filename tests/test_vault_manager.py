"""Tests for the VaultManager session: lifecycle, CRUD, listing, import/export."""

import json
import threading

import pytest

from pass_manager.vault import (
    Category,
    ChangeKind,
    EntryNotFound,
    EntryType,
    InvalidCredentialsOrCorrupt,
    InvalidEntry,
    InvalidRecordFormat,
    MemoryVaultStore,
    PersistenceFailure,
    VaultAlreadyExists,
    VaultCodec,
    VaultEventKind,
    VaultLocked,
    VaultManager,
    VaultNotFound,
)
from pass_manager.vault.vault_manager import SETTINGS_KEY, STORAGE_KEY

PASSWORD = "Tr0ub4dor&3"

LOGIN = {"type": "login", "title": "Example", "username": "alice", "password": "p@ss"}


class FlakyStore(MemoryVaultStore):
    """Memory store whose writes can be switched to fail."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def set(self, key, value):
        if self.fail_writes:
            raise PersistenceFailure("disk full")
        super().set(key, value)


# ── Lifecycle ───────────────────────────────────────────────────────


class TestLifecycle:

    def test_initially_locked(self, manager):
        assert manager.is_unlocked is False
        assert manager.has_vault() is False

    def test_create_vault_unlocks_empty(self, manager, store):
        manager.create_vault(PASSWORD)
        assert manager.is_unlocked
        assert manager.has_vault()
        assert manager.list_entries() == []
        envelope = json.loads(store.get(STORAGE_KEY))
        assert envelope["vault"]["formatVersion"] == "1.0"
        assert "lastModified" in envelope

    def test_create_twice_requires_overwrite(self, unlocked, store):
        unlocked.add_entry(LOGIN)
        before = store.get(STORAGE_KEY)
        with pytest.raises(VaultAlreadyExists):
            unlocked.create_vault("another")
        assert store.get(STORAGE_KEY) == before

        unlocked.create_vault("another", overwrite=True)
        assert unlocked.list_entries() == []
        unlocked.lock()
        with pytest.raises(InvalidCredentialsOrCorrupt):
            unlocked.unlock(PASSWORD)
        unlocked.unlock("another")

    def test_empty_master_password_rejected(self, manager):
        with pytest.raises(ValueError):
            manager.create_vault("")

    def test_unlock_without_vault(self, manager):
        with pytest.raises(VaultNotFound):
            manager.unlock(PASSWORD)

    def test_create_add_lock_unlock_scenario(self, manager):
        manager.create_vault(PASSWORD)
        manager.add_entry({"title": "Example", "username": "alice", "password": "p@ss"})
        manager.lock()
        assert not manager.is_unlocked

        entries = manager.unlock(PASSWORD)
        assert len(entries) == 1
        assert entries[0].title == "Example"
        assert entries[0].type is EntryType.LOGIN

    def test_wrong_password_scenario(self, unlocked):
        unlocked.add_entry(LOGIN)
        unlocked.lock()
        with pytest.raises(InvalidCredentialsOrCorrupt):
            unlocked.unlock("wrong")
        assert not unlocked.is_unlocked
        with pytest.raises(VaultLocked):
            unlocked.list_entries()

    def test_corrupt_store_value(self, manager, store):
        store.set(STORAGE_KEY, "{broken")
        assert manager.has_vault() is False
        with pytest.raises(InvalidRecordFormat):
            manager.unlock(PASSWORD)

    def test_lock_discards_password_and_entries(self, unlocked):
        unlocked.add_entry(LOGIN)
        held = unlocked._master_password
        assert bytes(held) == PASSWORD.encode()

        unlocked.lock()
        assert unlocked._master_password is None
        assert unlocked._entries is None
        assert set(held) == {0}

    def test_lock_when_locked_is_noop(self, manager):
        events = []
        manager.subscribe(events.append)
        manager.lock()
        assert events == []

    def test_events(self, manager):
        events = []
        manager.subscribe(events.append)

        manager.create_vault(PASSWORD)
        entry = manager.add_entry(LOGIN)
        manager.update_entry(entry.id, {"title": "Renamed"})
        manager.delete_entry(entry.id)
        manager.lock()

        assert [e.kind for e in events] == [
            VaultEventKind.UNLOCKED,
            VaultEventKind.ENTRY_CHANGED,
            VaultEventKind.ENTRY_CHANGED,
            VaultEventKind.ENTRY_CHANGED,
            VaultEventKind.LOCKED,
        ]
        assert [e.change for e in events[1:4]] == [
            ChangeKind.ADDED, ChangeKind.UPDATED, ChangeKind.DELETED,
        ]
        assert all(e.entry_id == entry.id for e in events[1:4])
        assert events[-1].auto is False

    def test_unsubscribe_and_failing_observer(self, unlocked):
        def broken(event):
            raise RuntimeError("ui gone")

        events = []
        unlocked.subscribe(broken)
        unlocked.subscribe(events.append)
        unlocked.add_entry(LOGIN)
        assert len(events) == 1

        unlocked.unsubscribe(events.append)
        unlocked.add_entry(LOGIN)
        assert len(events) == 1


# ── Locked guard ────────────────────────────────────────────────────


class TestLockedGuard:
    """Every entry operation on a locked session fails with VaultLocked."""

    @pytest.mark.parametrize("call", [
        lambda m: m.add_entry(LOGIN),
        lambda m: m.update_entry("x", {"title": "t"}),
        lambda m: m.delete_entry("x"),
        lambda m: m.get_entry("x"),
        lambda m: m.list_entries(),
        lambda m: m.list_by_category("favorites"),
        lambda m: m.search("a"),
        lambda m: m.get_counts(),
    ])
    def test_fresh_session(self, manager, store, call):
        with pytest.raises(VaultLocked):
            call(manager)
        assert store.get(STORAGE_KEY) is None

    def test_after_lock(self, unlocked, store):
        entry = unlocked.add_entry(LOGIN)
        unlocked.lock()
        before = store.get(STORAGE_KEY)
        with pytest.raises(VaultLocked):
            unlocked.update_entry(entry.id, {"title": "x"})
        with pytest.raises(VaultLocked):
            unlocked.delete_entry(entry.id)
        assert store.get(STORAGE_KEY) == before


# ── CRUD ────────────────────────────────────────────────────────────


class TestCrud:

    def test_add_then_get(self, unlocked):
        entry = unlocked.add_entry(LOGIN)
        fetched = unlocked.get_entry(entry.id)
        assert fetched == entry
        assert fetched.title == "Example"
        assert fetched.username == "alice"
        assert fetched.password == "p@ss"
        assert fetched.favorite is False
        assert fetched.created_at == fetched.modified_at

    def test_add_persists_full_payload(self, unlocked, store, fast_codec):
        unlocked.add_entry(LOGIN)
        unlocked.add_entry({"type": "note", "title": "Note", "noteContent": "hello"})
        record = fast_codec.parse_record(json.loads(store.get(STORAGE_KEY))["vault"])
        payload = fast_codec.open_record(PASSWORD, record)
        assert [e.title for e in payload.entries] == ["Example", "Note"]
        assert payload.entries[1].note_content == "hello"

    def test_ids_unique(self, unlocked):
        ids = {unlocked.add_entry(LOGIN).id for _ in range(20)}
        assert len(ids) == 20

    def test_returned_entries_are_copies(self, unlocked):
        entry = unlocked.add_entry(LOGIN)
        entry.title = "mutated"
        assert unlocked.get_entry(entry.id).title == "Example"

    def test_camel_and_snake_case_fields(self, unlocked):
        card = unlocked.add_entry({
            "type": "card", "title": "Visa",
            "cardHolder": "Alice", "card_number": "4111",
        })
        assert card.card_holder == "Alice"
        assert card.card_number == "4111"
        assert card.to_dict()["cardHolder"] == "Alice"

    def test_protected_fields_ignored(self, unlocked):
        entry = unlocked.add_entry({**LOGIN, "id": "forced", "createdAt": "2000-01-01T00:00:00"})
        assert entry.id != "forced"
        assert entry.created_at.year != 2000

    def test_title_trimmed_and_required(self, unlocked):
        assert unlocked.add_entry({"title": "  Padded  "}).title == "Padded"
        with pytest.raises(InvalidEntry):
            unlocked.add_entry({"title": "   "})
        with pytest.raises(InvalidEntry):
            unlocked.add_entry({"username": "no title"})

    @pytest.mark.parametrize("fields", [
        {"title": "x", "type": "bank"},
        {"title": "x", "favorite": "yes"},
        {"title": "x", "username": 42},
        {"title": "x", "colour": "red"},
    ])
    def test_invalid_fields(self, unlocked, fields):
        with pytest.raises(InvalidEntry):
            unlocked.add_entry(fields)
        assert unlocked.list_entries() == []

    def test_update_changes_only_patched_fields(self, unlocked):
        entry = unlocked.add_entry(LOGIN)
        updated = unlocked.update_entry(entry.id, {"username": "bob", "favorite": True})

        assert updated.username == "bob"
        assert updated.favorite is True
        assert updated.title == entry.title
        assert updated.password == entry.password
        assert updated.id == entry.id
        assert updated.created_at == entry.created_at
        assert updated.modified_at > entry.modified_at

    def test_update_always_advances_modified_at(self, unlocked):
        entry = unlocked.add_entry(LOGIN)
        last = entry.modified_at
        for _ in range(5):
            current = unlocked.update_entry(entry.id, {})
            assert current.modified_at > last
            last = current.modified_at

    def test_update_can_clear_field(self, unlocked):
        entry = unlocked.add_entry(LOGIN)
        assert unlocked.update_entry(entry.id, {"username": None}).username is None

    def test_update_rejects_blank_title(self, unlocked):
        entry = unlocked.add_entry(LOGIN)
        with pytest.raises(InvalidEntry):
            unlocked.update_entry(entry.id, {"title": ""})
        assert unlocked.get_entry(entry.id).title == "Example"

    def test_update_missing(self, unlocked):
        with pytest.raises(EntryNotFound):
            unlocked.update_entry("missing", {"title": "x"})

    def test_delete(self, unlocked):
        keep = unlocked.add_entry({"title": "keep"})
        gone = unlocked.add_entry({"title": "gone"})
        unlocked.delete_entry(gone.id)
        assert unlocked.get_entry(gone.id) is None
        assert unlocked.get_entry(keep.id) is not None
        with pytest.raises(EntryNotFound):
            unlocked.delete_entry(gone.id)

    def test_require_entry(self, unlocked):
        with pytest.raises(EntryNotFound):
            unlocked.require_entry("missing")

    def test_changes_survive_relock(self, unlocked):
        entry = unlocked.add_entry(LOGIN)
        unlocked.update_entry(entry.id, {"notes": "rotated 2024"})
        unlocked.lock()
        unlocked.unlock(PASSWORD)
        assert unlocked.get_entry(entry.id).notes == "rotated 2024"


# ── Failed persistence ──────────────────────────────────────────────


class TestPersistenceFailure:
    """A failed write leaves memory and store exactly as before."""

    @pytest.fixture
    def flaky(self, fast_codec):
        store = FlakyStore()
        mgr = VaultManager(store, codec=fast_codec, auto_lock_timeout=0)
        mgr.create_vault(PASSWORD)
        yield mgr, store
        mgr.shutdown()

    def test_add(self, flaky):
        mgr, store = flaky
        existing = mgr.add_entry(LOGIN)
        before = store.get(STORAGE_KEY)
        store.fail_writes = True
        with pytest.raises(PersistenceFailure):
            mgr.add_entry({"title": "lost"})
        assert [e.id for e in mgr.list_entries()] == [existing.id]
        assert store.get(STORAGE_KEY) == before

    def test_update(self, flaky):
        mgr, store = flaky
        entry = mgr.add_entry(LOGIN)
        store.fail_writes = True
        with pytest.raises(PersistenceFailure):
            mgr.update_entry(entry.id, {"title": "changed"})
        assert mgr.get_entry(entry.id) == entry

    def test_delete(self, flaky):
        mgr, store = flaky
        entry = mgr.add_entry(LOGIN)
        store.fail_writes = True
        with pytest.raises(PersistenceFailure):
            mgr.delete_entry(entry.id)
        assert mgr.get_entry(entry.id) == entry

    def test_next_write_after_failure(self, flaky):
        mgr, store = flaky
        store.fail_writes = True
        with pytest.raises(PersistenceFailure):
            mgr.add_entry({"title": "lost"})
        store.fail_writes = False
        mgr.add_entry({"title": "saved"})
        mgr.lock()
        assert [e.title for e in mgr.unlock(PASSWORD)] == ["saved"]


# ── Listing and search ──────────────────────────────────────────────


class TestListing:

    @pytest.fixture
    def populated(self, unlocked):
        unlocked.add_entry({"type": "login", "title": "GitHub", "username": "octo",
                            "url": "https://github.com", "favorite": True})
        unlocked.add_entry({"type": "login", "title": "Bank", "username": "alice",
                            "notes": "PIN in safe"})
        unlocked.add_entry({"type": "card", "title": "Visa", "cardHolder": "Alice Smith"})
        unlocked.add_entry({"type": "note", "title": "Wi-Fi", "noteContent": "router at GitHub HQ",
                            "favorite": True})
        return unlocked

    def test_all(self, populated):
        assert len(populated.list_by_category("all")) == 4

    def test_favorites_is_exact_subset(self, populated):
        favorites = populated.list_by_category(Category.FAVORITES)
        everything = populated.list_entries()
        assert {e.id for e in favorites} == {e.id for e in everything if e.favorite}

    @pytest.mark.parametrize("category,titles", [
        ("login", {"GitHub", "Bank"}),
        ("card", {"Visa"}),
        ("note", {"Wi-Fi"}),
    ])
    def test_type_categories(self, populated, category, titles):
        assert {e.title for e in populated.list_by_category(category)} == titles

    def test_unknown_category(self, populated):
        with pytest.raises(ValueError):
            populated.list_by_category("passwords")

    def test_search_case_insensitive(self, populated):
        assert {e.title for e in populated.search("ALICE")} == {"Bank", "Visa"}

    @pytest.mark.parametrize("query,titles", [
        ("github.com", {"GitHub"}),
        ("pin in", {"Bank"}),
        ("smith", {"Visa"}),
        ("router", {"Wi-Fi"}),
        ("zzz", set()),
    ])
    def test_search_fields(self, populated, query, titles):
        assert {e.title for e in populated.search(query)} == titles

    def test_search_does_not_match_secrets(self, unlocked):
        unlocked.add_entry({"title": "Mail", "password": "hunter2"})
        unlocked.add_entry({"type": "card", "title": "Card", "cardNumber": "4111"})
        assert unlocked.search("hunter2") == []
        assert unlocked.search("4111") == []

    def test_search_within_category(self, populated):
        assert {e.title for e in populated.search("github", category="note")} == {"Wi-Fi"}
        assert {e.title for e in populated.search("github", category="favorites")} == \
            {"GitHub", "Wi-Fi"}

    def test_empty_query_returns_category(self, populated):
        assert len(populated.search("", category="login")) == 2

    def test_most_recently_modified_first(self, populated):
        bank = next(e for e in populated.list_entries() if e.title == "Bank")
        populated.update_entry(bank.id, {"notes": "moved"})
        listed = populated.list_entries()
        assert listed[0].title == "Bank"
        stamps = [e.modified_at for e in listed]
        assert stamps == sorted(stamps, reverse=True)

    def test_counts(self, populated):
        assert populated.get_counts() == {
            "all": 4, "favorites": 2, "login": 2, "card": 1, "note": 1,
        }


# ── Concurrency ─────────────────────────────────────────────────────


class TestConcurrency:

    def test_concurrent_adds_lose_nothing(self, unlocked):
        def worker(n):
            for i in range(10):
                unlocked.add_entry({"title": f"t{n}-{i}"})

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(unlocked.list_entries()) == 40
        unlocked.lock()
        assert len(unlocked.unlock(PASSWORD)) == 40


# ── Import / export ─────────────────────────────────────────────────


class TestImportExport:

    def test_export_requires_vault(self, manager):
        with pytest.raises(VaultNotFound):
            manager.export_vault()

    def test_export_is_encrypted_record(self, unlocked):
        unlocked.add_entry(LOGIN)
        data = json.loads(unlocked.export_vault())
        assert data["formatVersion"] == "1.0"
        assert "alice" not in json.dumps(data)

    def test_import_into_fresh_manager(self, unlocked, fast_codec):
        unlocked.add_entry(LOGIN)
        exported = unlocked.export_vault()

        other = VaultManager(MemoryVaultStore(), codec=fast_codec, auto_lock_timeout=0)
        try:
            entries = other.import_vault(exported, PASSWORD)
            assert other.is_unlocked
            assert [e.title for e in entries] == ["Example"]
            other.lock()
            assert [e.title for e in other.unlock(PASSWORD)] == ["Example"]
        finally:
            other.shutdown()

    def test_import_unsupported_version_keeps_current(self, unlocked, store):
        unlocked.add_entry(LOGIN)
        before = store.get(STORAGE_KEY)
        data = json.loads(unlocked.export_vault())
        data["formatVersion"] = "0.9"

        with pytest.raises(InvalidRecordFormat):
            unlocked.import_vault(json.dumps(data), PASSWORD)
        assert store.get(STORAGE_KEY) == before
        assert unlocked.is_unlocked
        assert len(unlocked.list_entries()) == 1

    def test_import_wrong_password_keeps_current(self, unlocked, store, fast_codec):
        foreign = VaultManager(MemoryVaultStore(), codec=fast_codec, auto_lock_timeout=0)
        foreign.create_vault("foreign-pass")
        exported = foreign.export_vault()
        foreign.shutdown()

        before = store.get(STORAGE_KEY)
        with pytest.raises(InvalidCredentialsOrCorrupt):
            unlocked.import_vault(exported, PASSWORD)
        assert store.get(STORAGE_KEY) == before

    def test_import_garbage(self, unlocked):
        with pytest.raises(InvalidRecordFormat):
            unlocked.import_vault("not a vault", PASSWORD)


# ── Settings, reload, clear ─────────────────────────────────────────


class TestSettingsAndMaintenance:

    def test_settings_persisted(self, store, fast_codec):
        mgr = VaultManager(store, codec=fast_codec)
        assert mgr.auto_lock_timeout == 300.0
        mgr.update_settings(auto_lock_timeout=42)
        mgr.shutdown()

        again = VaultManager(store, codec=fast_codec)
        assert again.get_settings() == {"autoLockTimeout": 42.0}
        again.shutdown()

    def test_explicit_timeout_overrides_stored(self, store, fast_codec):
        store.set(SETTINGS_KEY, json.dumps({"autoLockTimeout": 42}))
        mgr = VaultManager(store, codec=fast_codec, auto_lock_timeout=7)
        assert mgr.auto_lock_timeout == 7
        mgr.shutdown()

    def test_bad_stored_settings_ignored(self, store, fast_codec):
        store.set(SETTINGS_KEY, "{{{")
        mgr = VaultManager(store, codec=fast_codec)
        assert mgr.auto_lock_timeout == 300.0
        mgr.shutdown()

    def test_negative_timeout_rejected(self, manager):
        with pytest.raises(ValueError):
            manager.update_settings(auto_lock_timeout=-1)

    def test_reload_from_store_locks(self, unlocked):
        events = []
        unlocked.subscribe(events.append)
        unlocked.reload_from_store()
        assert not unlocked.is_unlocked
        assert events[-1].kind is VaultEventKind.LOCKED

    def test_clear_all(self, unlocked, store):
        unlocked.update_settings(auto_lock_timeout=10)
        unlocked.clear_all()
        assert not unlocked.is_unlocked
        assert not unlocked.has_vault()
        assert store.get(STORAGE_KEY) is None
        assert store.get(SETTINGS_KEY) is None

    def test_default_codec(self, store):
        mgr = VaultManager(store)
        assert isinstance(mgr.codec, VaultCodec)
        assert mgr.codec.iterations == 600_000
        mgr.shutdown()


# ── Audit trail ─────────────────────────────────────────────────────


class TestAuditTrail:

    def test_secrets_never_logged(self, unlocked, _isolate_audit_logs):
        entry = unlocked.add_entry({"title": "Mail", "password": "hunter2-SECRET"})
        unlocked.update_entry(entry.id, {"password": "rotated-SECRET"})
        unlocked.lock()
        with pytest.raises(InvalidCredentialsOrCorrupt):
            unlocked.unlock("wrong-guess-SECRET")

        text = "".join(p.read_text() for p in _isolate_audit_logs.glob("*.log"))
        assert "vault.entry.added" in text
        assert "vault.unlock.failed" in text
        assert "SECRET" not in text
        assert PASSWORD not in text
