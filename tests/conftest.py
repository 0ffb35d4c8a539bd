"""
Shared pytest fixtures for the Pass Manager test suite.

Autouse fixtures below isolate tests from live application data:
  - Audit logger -> temp directory (no test events in ./audit_logs)

Vault fixtures use a low PBKDF2 iteration count so key derivation does
not dominate the run time. Records still store the count they were
written with, exactly as with the production default.
"""

import time

import pytest

FAST_ITERATIONS = 1_000


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test."""
    import pass_manager.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield tmp_path / "audit_logs"

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture
def fast_codec():
    from pass_manager.vault import VaultCodec

    return VaultCodec(iterations=FAST_ITERATIONS)


@pytest.fixture
def store():
    from pass_manager.vault import MemoryVaultStore

    return MemoryVaultStore()


@pytest.fixture
def manager(store, fast_codec):
    """Locked VaultManager over an empty memory store."""
    from pass_manager.vault import VaultManager

    mgr = VaultManager(store, codec=fast_codec, auto_lock_timeout=0)
    yield mgr
    mgr.shutdown()


@pytest.fixture
def unlocked(manager):
    """VaultManager with a freshly created (unlocked) vault."""
    manager.create_vault("Tr0ub4dor&3")
    return manager


def _wait_for(predicate, timeout=2.0, interval=0.01):
    """Poll ``predicate`` until true or ``timeout`` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    return _wait_for
