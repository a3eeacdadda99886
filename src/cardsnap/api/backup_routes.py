"""Backup API routes: create, validate and restore encrypted card archives.

Archives travel base64-encoded inside JSON bodies; the server never writes
them to disk. Handlers are plain ``def`` so FastAPI runs the CPU-bound key
derivation in its threadpool instead of on the event loop.
"""

import base64
import binascii
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from returns.result import Failure

from ..backup.backup_database import BackupHistory
from ..backup.backup_service import BackupService
from ..backup.conflict_resolver import ConflictChoice, MergeStrategy
from ..core.config import VaultSettings
from ..core.errors import MalformedArchive, OperationInProgress, StoreError, VaultError
from ..records.models import format_timestamp
from ..records.record_store import RecordStore
from ..records.sqlite_store import SqliteRecordStore
from .security import require_session_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/backups", tags=["backups"])

# ── Singletons ───────────────────────────────────────────────────────

_settings: Optional[VaultSettings] = None
_record_store: Optional[RecordStore] = None
_history: Optional[BackupHistory] = None
_backup_service: Optional[BackupService] = None


def get_settings() -> VaultSettings:
    global _settings
    if _settings is None:
        _settings = VaultSettings.from_env()
    return _settings


def get_record_store() -> RecordStore:
    """Lazy singleton: the configured SQLite card store."""
    global _record_store
    if _record_store is None:
        _record_store = SqliteRecordStore(get_settings().db_path)
    return _record_store


def get_backup_history() -> BackupHistory:
    global _history
    if _history is None:
        _history = BackupHistory(get_settings().history_db_path)
    return _history


def get_backup_service() -> BackupService:
    """Lazy singleton, created on first use."""
    global _backup_service
    if _backup_service is None:
        _backup_service = BackupService(
            get_record_store(),
            history=get_backup_history(),
            iterations=get_settings().kdf_iterations,
        )
    return _backup_service


def set_backup_service(
    service: Optional[BackupService],
    record_store: Optional[RecordStore] = None,
    history: Optional[BackupHistory] = None,
) -> None:
    """Swap the wiring (tests, embedding hosts). ``None`` resets to lazy defaults."""
    global _backup_service, _record_store, _history
    _backup_service = service
    _record_store = record_store
    _history = history


# ── Pydantic Models ──────────────────────────────────────────────────


class CreateBackupRequest(BaseModel):
    password: str = Field(..., min_length=1)


class ValidateBackupRequest(BaseModel):
    archive: str = Field(..., min_length=1, description="Base64-encoded archive")


class RestoreBackupRequest(BaseModel):
    archive: str = Field(..., min_length=1, description="Base64-encoded archive")
    password: str = Field(..., min_length=1)
    strategy: MergeStrategy = MergeStrategy.MERGE
    overrides: Dict[str, ConflictChoice] = Field(default_factory=dict)


# ── Helpers ──────────────────────────────────────────────────────────


def _status_for(error: VaultError) -> int:
    if isinstance(error, OperationInProgress):
        return status.HTTP_409_CONFLICT
    if isinstance(error, StoreError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST


def _raise_for(error: VaultError):
    # user_message only: never echo decryption or checksum details to clients
    raise HTTPException(
        status_code=_status_for(error),
        detail={"code": error.code, "message": error.user_message},
    )


def _decode_archive(archive: str) -> bytes:
    try:
        return base64.b64decode(archive.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        _raise_for(MalformedArchive("Archive is not valid base64"))


# ── Routes ───────────────────────────────────────────────────────────


@router.post("")
def create_backup(
    body: CreateBackupRequest,
    _token: str = Depends(require_session_token),
):
    """Encrypt every card and store into a portable archive."""
    try:
        get_settings().check_password(body.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = get_backup_service().create_backup(body.password)
    if isinstance(result, Failure):
        _raise_for(result.failure())
    archive = result.unwrap()
    return {
        "archive": base64.b64encode(archive.data).decode("ascii"),
        "info": archive.info.to_dict(),
        "size_bytes": archive.size_bytes,
        "sha256": archive.sha256,
    }


@router.post("/validate")
def validate_backup(
    body: ValidateBackupRequest,
    _token: str = Depends(require_session_token),
):
    """Report what an archive contains without decrypting it."""
    result = get_backup_service().validate_backup(_decode_archive(body.archive))
    if isinstance(result, Failure):
        _raise_for(result.failure())
    return result.unwrap().to_dict()


@router.post("/restore")
def restore_backup(
    body: RestoreBackupRequest,
    _token: str = Depends(require_session_token),
):
    """Decrypt, verify and merge an archive into the card store.

    A merge that hits equal-timestamp conflicts commits nothing and answers
    409 with the conflict list; resend with ``overrides`` to settle them.
    """
    result = get_backup_service().restore_backup(
        _decode_archive(body.archive),
        body.password,
        body.strategy,
        overrides=body.overrides,
    )
    if isinstance(result, Failure):
        _raise_for(result.failure())
    summary = result.unwrap()
    if not summary.committed:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=summary.to_dict())
    return summary.to_dict()


@router.get("/history")
def backup_history(
    limit: int = Query(50, ge=1, le=500),
    _token: str = Depends(require_session_token),
):
    """Recent backups and restores, newest first."""
    history = get_backup_history()
    rows = history.list_events(limit=limit)
    last = history.last_backup_at()
    return {
        "history": rows,
        "total": len(rows),
        "last_backup_at": format_timestamp(last) if last else None,
    }
