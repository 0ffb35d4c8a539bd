"""Tests for environment-driven configuration."""

import os
from pathlib import Path

import pytest

from pass_manager.core import AppConfig


class TestAppConfig:

    def test_defaults(self):
        config = AppConfig.from_env({})
        assert config.data_dir == Path("data")
        assert config.vault_db_path == Path("data") / "vault.db"
        assert config.audit_log_dir == Path("./audit_logs")
        assert config.auto_lock_seconds is None
        assert config.kdf_iterations == 600_000
        assert config.host == "127.0.0.1"
        assert config.port == 8000

    def test_overrides(self, tmp_path):
        config = AppConfig.from_env({
            "PASS_MANAGER_DATA_DIR": str(tmp_path),
            "PASS_MANAGER_AUDIT_LOG_DIR": str(tmp_path / "logs"),
            "PASS_MANAGER_AUTO_LOCK_SECONDS": "60",
            "PASS_MANAGER_KDF_ITERATIONS": "310000",
            "PASS_MANAGER_HOST": "0.0.0.0",
            "PASS_MANAGER_PORT": "9000",
        })
        assert config.vault_db_path == tmp_path / "vault.db"
        assert config.audit_log_dir == tmp_path / "logs"
        assert config.auto_lock_seconds == 60.0
        assert config.kdf_iterations == 310_000
        assert config.host == "0.0.0.0"
        assert config.port == 9000

    def test_explicit_db_path_wins(self, tmp_path):
        config = AppConfig.from_env({
            "PASS_MANAGER_DATA_DIR": str(tmp_path),
            "PASS_MANAGER_DB_PATH": str(tmp_path / "other.db"),
        })
        assert config.vault_db_path == tmp_path / "other.db"

    def test_blank_values_use_defaults(self):
        config = AppConfig.from_env({"PASS_MANAGER_PORT": "  "})
        assert config.port == 8000

    def test_zero_disables_auto_lock(self):
        assert AppConfig.from_env({"PASS_MANAGER_AUTO_LOCK_SECONDS": "0"}).auto_lock_seconds == 0

    @pytest.mark.parametrize("env", [
        {"PASS_MANAGER_AUTO_LOCK_SECONDS": "soon"},
        {"PASS_MANAGER_AUTO_LOCK_SECONDS": "-1"},
        {"PASS_MANAGER_KDF_ITERATIONS": "many"},
        {"PASS_MANAGER_KDF_ITERATIONS": "1000"},
        {"PASS_MANAGER_KDF_ITERATIONS": "0", "PASS_MANAGER_ALLOW_WEAK_KDF": "1"},
        {"PASS_MANAGER_PORT": "http"},
        {"PASS_MANAGER_PORT": "70000"},
    ])
    def test_invalid(self, env):
        with pytest.raises(ValueError):
            AppConfig.from_env(env)

    def test_weak_kdf_opt_in(self):
        config = AppConfig.from_env({
            "PASS_MANAGER_KDF_ITERATIONS": "1000",
            "PASS_MANAGER_ALLOW_WEAK_KDF": "true",
        })
        assert config.kdf_iterations == 1000

    def test_dotenv_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("PASS_MANAGER_PORT=8123\nPASS_MANAGER_HOST=localhost\n")
        monkeypatch.delenv("PASS_MANAGER_PORT", raising=False)
        monkeypatch.delenv("PASS_MANAGER_HOST", raising=False)
        try:
            config = AppConfig.from_env(dotenv_path=env_file)
            assert config.port == 8123
            assert config.host == "localhost"
        finally:
            os.environ.pop("PASS_MANAGER_PORT", None)
            os.environ.pop("PASS_MANAGER_HOST", None)

    def test_process_environment_beats_dotenv(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("PASS_MANAGER_PORT=8123\n")
        monkeypatch.setenv("PASS_MANAGER_PORT", "8200")
        assert AppConfig.from_env(dotenv_path=env_file).port == 8200
