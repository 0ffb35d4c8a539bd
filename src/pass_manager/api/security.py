# API Security - Session token for the local vault API
#
# A random token is generated when the backend starts; every vault
# endpoint requires it in the X-Session-Token header so other local
# processes cannot drive the vault.

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

_SESSION_TOKEN: Optional[str] = None


def initialize_session_token() -> str:
    """
    Generate a new 256-bit session token for this backend instance.

    Returns:
        The generated session token (handed to the UI at start-up)
    """
    global _SESSION_TOKEN
    _SESSION_TOKEN = secrets.token_urlsafe(32)
    return _SESSION_TOKEN


def get_session_token() -> str:
    """
    Raises:
        RuntimeError: If the session token hasn't been initialized
    """
    if _SESSION_TOKEN is None:
        raise RuntimeError("Session token not initialized. Call initialize_session_token() first.")
    return _SESSION_TOKEN


async def verify_session_token(x_session_token: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency: reject calls without the current session token.

    Raises:
        HTTPException: 503 before initialization, 401 if missing or invalid
    """
    if _SESSION_TOKEN is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session token not initialized"
        )

    if x_session_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session token"
        )

    # Constant-time comparison
    if not secrets.compare_digest(x_session_token, _SESSION_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token"
        )

    return x_session_token


def ensure_session_token() -> str:
    """Current session token, generating one on first use."""
    if _SESSION_TOKEN is None:
        return initialize_session_token()
    return _SESSION_TOKEN
