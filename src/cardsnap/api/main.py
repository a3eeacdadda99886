# CardSnap Vault - FastAPI Backend
#
# Local REST API the wallet UI talks to for backup and restore. Binds to
# 127.0.0.1 by default; every route requires the per-process session token.

import logging

import uvicorn
from fastapi import FastAPI

from .. import __version__
from ..core import EventSeverity, EventType, get_audit_logger
from .backup_routes import router as backup_router
from .card_routes import router as card_router
from .backup_routes import get_settings
from .security import get_session_token, initialize_session_token

logger = logging.getLogger(__name__)

app = FastAPI(
    title="CardSnap Vault API",
    description="Encrypted backup and restore for the CardSnap card wallet",
    version=__version__,
)

app.include_router(backup_router)
app.include_router(card_router)


@app.on_event("startup")
async def startup_event():
    """Install the session token (unless `cardsnap serve` already did) and log the start."""
    try:
        get_session_token()
    except RuntimeError:
        initialize_session_token(get_settings().session_token)
    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="CardSnap Vault API starting (session token initialized)",
    )


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": __version__}


def start_api_server(host: str = "127.0.0.1", port: int = 8000):
    """
    Start FastAPI server.

    Args:
        host: Host to bind to (default: localhost only)
        port: Port to listen on
    """
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    start_api_server()
