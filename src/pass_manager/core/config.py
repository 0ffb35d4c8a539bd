# Configuration - environment driven settings
#
# Values come from the process environment, optionally seeded from a
# `.env` file in the working directory (python-dotenv). Every key is
# prefixed with PASS_MANAGER_.

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

ENV_PREFIX = "PASS_MANAGER_"

DEFAULT_KDF_ITERATIONS = 600_000   # OWASP 2023 for PBKDF2-SHA256
MIN_KDF_ITERATIONS = 100_000


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AppConfig:
    """Runtime configuration for the vault service."""

    data_dir: Path = Path("data")
    db_path: Optional[Path] = None
    audit_log_dir: Path = Path("./audit_logs")
    # None defers to the timeout saved in the vault settings
    auto_lock_seconds: Optional[float] = None
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def vault_db_path(self) -> Path:
        return self.db_path or self.data_dir / "vault.db"

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[Path] = None,
    ) -> "AppConfig":
        """
        Build a config from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (tests)
            dotenv_path: Explicit .env file; ignored when environ is given

        Raises:
            ValueError: If a value is malformed or out of range
        """
        if environ is None:
            load_dotenv(dotenv_path=dotenv_path)
            environ = os.environ

        def get(name: str) -> Optional[str]:
            value = environ.get(ENV_PREFIX + name)
            if value is None or value.strip() == "":
                return None
            return value.strip()

        data_dir = Path(get("DATA_DIR") or "data")
        db_path = Path(get("DB_PATH")) if get("DB_PATH") else None
        audit_log_dir = Path(get("AUDIT_LOG_DIR") or "./audit_logs")

        auto_lock_raw = get("AUTO_LOCK_SECONDS")
        try:
            auto_lock = float(auto_lock_raw) if auto_lock_raw else None
        except ValueError:
            raise ValueError(f"{ENV_PREFIX}AUTO_LOCK_SECONDS must be a number, got {auto_lock_raw!r}")
        if auto_lock is not None and auto_lock < 0:
            raise ValueError(f"{ENV_PREFIX}AUTO_LOCK_SECONDS must be >= 0")

        iterations_raw = get("KDF_ITERATIONS")
        try:
            iterations = int(iterations_raw) if iterations_raw else DEFAULT_KDF_ITERATIONS
        except ValueError:
            raise ValueError(f"{ENV_PREFIX}KDF_ITERATIONS must be an integer, got {iterations_raw!r}")
        allow_weak = _parse_bool(get("ALLOW_WEAK_KDF") or "0")
        if iterations < 1 or (iterations < MIN_KDF_ITERATIONS and not allow_weak):
            raise ValueError(
                f"{ENV_PREFIX}KDF_ITERATIONS must be at least {MIN_KDF_ITERATIONS}"
            )

        port_raw = get("PORT")
        try:
            port = int(port_raw) if port_raw else 8000
        except ValueError:
            raise ValueError(f"{ENV_PREFIX}PORT must be an integer, got {port_raw!r}")
        if not 1 <= port <= 65535:
            raise ValueError(f"{ENV_PREFIX}PORT out of range: {port}")

        return cls(
            data_dir=data_dir,
            db_path=db_path,
            audit_log_dir=audit_log_dir,
            auto_lock_seconds=auto_lock,
            kdf_iterations=iterations,
            host=get("HOST") or "127.0.0.1",
            port=port,
        )
