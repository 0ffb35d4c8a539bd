# API - FastAPI application factory
#
# The composition root: builds the store, codec and VaultManager from
# AppConfig and hands the manager to the routes through app.state.

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core import AppConfig, EventType, EventSeverity, get_audit_logger
from ..vault import SQLiteVaultStore, VaultCodec, VaultManager
from .security import ensure_session_token
from .vault_routes import router as vault_router

logger = logging.getLogger(__name__)

_allowed_origins = [
    "http://localhost:8000", "http://127.0.0.1:8000",
    "http://localhost:3000", "http://127.0.0.1:3000",
]


def build_vault_manager(config: AppConfig) -> VaultManager:
    """VaultManager over the SQLite store configured in ``config``."""
    store = SQLiteVaultStore(config.vault_db_path)
    codec = VaultCodec(iterations=config.kdf_iterations)
    return VaultManager(store, codec=codec, auto_lock_timeout=config.auto_lock_seconds)


def create_app(
    manager: Optional[VaultManager] = None,
    config: Optional[AppConfig] = None,
) -> FastAPI:
    """
    Create the vault API.

    Args:
        manager: Pre-built VaultManager (tests); built from config otherwise
        config: Defaults to AppConfig.from_env()
    """
    if manager is None:
        config = config or AppConfig.from_env()
        manager = build_vault_manager(config)

    app = FastAPI(
        title="Pass Manager API",
        description="Local encrypted password vault",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.vault_manager = manager
    app.include_router(vault_router)

    @app.on_event("startup")
    def _startup():
        ensure_session_token()
        get_audit_logger().log_event(
            EventType.SYSTEM_START,
            EventSeverity.INFO,
            "Vault API started",
        )

    @app.on_event("shutdown")
    def _shutdown():
        manager.shutdown()
        get_audit_logger().log_event(
            EventType.SYSTEM_STOP,
            EventSeverity.INFO,
            "Vault API stopped",
        )

    return app
