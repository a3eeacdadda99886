# CardSnap Vault - API session token
#
# The vault API listens on localhost only, but any local process can reach
# localhost. The wallet UI either hands the backend a token through
# CARDSNAP_SESSION_TOKEN when it launches it, or reads the one the backend
# mints at startup. Every route that touches cards or archives requires it
# in the X-Session-Token header. Rejected calls are audited; the token
# itself never is.

import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from ..core.audit_log import EventSeverity, EventType, log_security_event

logger = logging.getLogger(__name__)

# Launcher-supplied tokens must carry at least as much entropy as a minted one
MIN_TOKEN_LENGTH = 32

_SESSION_TOKEN: Optional[str] = None


def initialize_session_token(token: Optional[str] = None) -> str:
    """
    Install the session token for this backend instance and return it.

    Args:
        token: Token chosen by the launching wallet UI. When omitted a fresh
            256-bit URL-safe token is minted.

    Raises:
        ValueError: If a supplied token is shorter than MIN_TOKEN_LENGTH
    """
    global _SESSION_TOKEN
    if token is not None:
        if len(token) < MIN_TOKEN_LENGTH:
            raise ValueError(
                f"CARDSNAP_SESSION_TOKEN must be at least {MIN_TOKEN_LENGTH} characters"
            )
        _SESSION_TOKEN = token
    else:
        _SESSION_TOKEN = secrets.token_urlsafe(32)
    return _SESSION_TOKEN


def get_session_token() -> str:
    """
    Current session token.

    Raises:
        RuntimeError: If initialize_session_token() has not run yet
    """
    if _SESSION_TOKEN is None:
        raise RuntimeError("Session token not initialized. Call initialize_session_token() first.")
    return _SESSION_TOKEN


def _reject(request: Request, reason: str):
    try:
        log_security_event(
            EventType.API_AUTH_REJECTED,
            EventSeverity.ALERT,
            "API call rejected: bad session token",
            details={
                "reason": reason,
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None,
            },
        )
    except Exception:
        logger.warning("Audit log failed for rejected API call", exc_info=True)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "invalid_session", "message": "Missing or invalid session token."},
    )


async def require_session_token(
    request: Request,
    x_session_token: Optional[str] = Header(None),
) -> str:
    """
    FastAPI dependency guarding the card and backup routes.

    Raises:
        HTTPException: 503 before startup, 401 if the header is missing or wrong
    """
    if _SESSION_TOKEN is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "api_not_ready", "message": "The vault API is still starting."},
        )

    if not x_session_token:
        _reject(request, "missing")

    # Bytes, so a non-ASCII header value is a mismatch rather than a TypeError
    if not secrets.compare_digest(x_session_token.encode("utf-8"), _SESSION_TOKEN.encode("utf-8")):
        _reject(request, "mismatch")

    return x_session_token
