"""Backup service: create, validate and restore encrypted card archives.

An archive is a single JSON envelope (see archive_codec) whose ciphertext is
the canonical manifest of every card and store, encrypted with AES-256-GCM
under a PBKDF2-derived key. Restores run a fixed pipeline:

    DECRYPTING -> PARSING -> VERIFYING -> RESOLVING -> COMMITTING -> DONE
                                                              \\-> FAILED

Nothing is written to the record store before COMMITTING, and COMMITTING is
one atomic ``commit_batch`` call, so every failure leaves the store as it was.

One backup or restore runs at a time per service; a second caller gets
``OperationInProgress`` immediately instead of queueing behind the first.
"""

import hashlib
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from returns.result import Failure, Result, Success

from ..core.errors import (
    BackupError,
    EmptyStoreError,
    MalformedArchive,
    OperationInProgress,
    RestoreCancelled,
    RestoreError,
    ValidationError,
    VaultError,
    WrongPasswordOrCorrupted,
)
from ..records.record_store import RecordStore
from .archive_codec import (
    ArchiveInfo,
    Envelope,
    build_manifest,
    decode_envelope,
    encode_envelope,
    parse_manifest,
    serialize_manifest,
    verify_checksums,
)
from .backup_crypto import BackupCrypto, KeyMaterialSource, PasswordKeySource
from .backup_database import OPERATION_BACKUP, OPERATION_RESTORE, BackupHistory
from .conflict_resolver import Conflict, ConflictChoice, MergeStrategy, resolve

logger = logging.getLogger(__name__)

Secret = Union[str, KeyMaterialSource]


class RestoreState(str, Enum):
    IDLE = "idle"
    DECRYPTING = "decrypting"
    PARSING = "parsing"
    VERIFYING = "verifying"
    RESOLVING = "resolving"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class EncryptedArchive:
    """Envelope bytes plus what a caller needs to label and store them."""

    data: bytes
    info: ArchiveInfo
    sha256: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class RestoreSummary:
    """Outcome of a restore.

    Counts describe the resolved plan; ``committed`` says whether it was
    applied. A merge that stopped on conflicts has ``committed=False`` and
    lists them in ``conflicts``.
    """

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    unresolved: int = 0
    committed: bool = False
    conflicts: List[Conflict] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "unresolved": self.unresolved,
            "committed": self.committed,
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


class BackupService:
    """Orchestrates backup creation, validation and restore.

    Args:
        record_store: Where cards are read from and restored into.
        history: Optional ledger; successful operations are recorded in it.
        iterations: PBKDF2 work factor for new archives (150 000 to 10 000 000).
    """

    def __init__(
        self,
        record_store: RecordStore,
        history: Optional[BackupHistory] = None,
        iterations: int = BackupCrypto.PBKDF2_ITERATIONS,
    ):
        if not BackupCrypto.MIN_ITERATIONS <= iterations <= BackupCrypto.MAX_ITERATIONS:
            raise ValueError(
                f"iterations must be between {BackupCrypto.MIN_ITERATIONS} and "
                f"{BackupCrypto.MAX_ITERATIONS}, got {iterations}"
            )
        self._store = record_store
        self._history = history
        self._iterations = iterations
        self._lock = threading.Lock()
        self.state = RestoreState.IDLE

    # ── Create ───────────────────────────────────────────────────────

    def create_backup(self, password: Secret) -> Result[EncryptedArchive, BackupError]:
        """Snapshot the store and return an encrypted archive. Never persists it.

        Raises:
            ValueError: Empty password.
        """
        key_source = _key_source(password)
        if not self._lock.acquire(blocking=False):
            return self._busy("backup")
        try:
            return self._create_backup_locked(key_source)
        finally:
            self._lock.release()

    def _create_backup_locked(
        self, key_source: KeyMaterialSource
    ) -> Result[EncryptedArchive, VaultError]:
        snapshot_result = self._store.read_all()
        if isinstance(snapshot_result, Failure):
            error = snapshot_result.failure()
            if not isinstance(error, EmptyStoreError):
                error = EmptyStoreError(error.detail)
            _audit_log("backup.failed", "Backup failed: store unreadable", {"error": error.code}, "critical")
            return Failure(error)
        snapshot = snapshot_result.unwrap()

        manifest = build_manifest(snapshot.records, snapshot.stores)
        info = ArchiveInfo.from_manifest(manifest)

        salt = BackupCrypto.generate_salt()
        key_result = key_source.key_for(salt, self._iterations)
        if isinstance(key_result, Failure):
            _audit_log("backup.failed", "Backup failed: key derivation", {"error": key_result.failure().code}, "alert")
            return key_result

        iv = BackupCrypto.generate_iv()
        ciphertext, tag = BackupCrypto.encrypt(
            key_result.unwrap(), iv, serialize_manifest(manifest), info.associated_data()
        )
        data = encode_envelope(
            Envelope(
                salt=salt,
                iterations=self._iterations,
                iv=iv,
                auth_tag=tag,
                ciphertext=ciphertext,
                info=info,
            )
        )
        archive = EncryptedArchive(data=data, info=info, sha256=hashlib.sha256(data).hexdigest())

        self._record_history(OPERATION_BACKUP, info, archive.sha256)
        _audit_log("backup.created", "Backup created", {
            "record_count": info.record_count,
            "store_count": info.store_count,
            "size_bytes": archive.size_bytes,
            "sha256": archive.sha256,
        })
        logger.info(
            "Backup created: %d cards, %d stores, %d bytes",
            info.record_count, info.store_count, archive.size_bytes,
        )
        return Success(archive)

    # ── Validate ─────────────────────────────────────────────────────

    def validate_backup(self, archive_bytes: bytes) -> Result[ArchiveInfo, ValidationError]:
        """Read the cleartext preview header. No password, no decryption."""
        result = decode_envelope(archive_bytes)
        if isinstance(result, Failure):
            logger.info("Archive rejected: %s", result.failure().detail)
            return result
        info = result.unwrap().info
        _audit_log("backup.validated", "Archive validated", info.to_dict())
        return Success(info)

    # ── Restore ──────────────────────────────────────────────────────

    def restore_backup(
        self,
        archive_bytes: bytes,
        password: Secret,
        strategy: MergeStrategy,
        overrides: Optional[Mapping[str, ConflictChoice]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Result[RestoreSummary, RestoreError]:
        """Decrypt, verify and merge an archive into the record store.

        Args:
            archive_bytes: Envelope produced by ``create_backup``.
            password: Archive password (or any KeyMaterialSource).
            strategy: How differing same-id records are settled.
            overrides: Decisions keyed by override_key() for conflicts from an
                earlier attempt.
            cancel_event: Honoured up to the start of COMMITTING.

        Raises:
            ValueError: Empty password.
            TypeError: strategy is not a MergeStrategy.
        """
        if not isinstance(strategy, MergeStrategy):
            raise TypeError(f"strategy must be a MergeStrategy, got {strategy!r}")
        key_source = _key_source(password)
        if not self._lock.acquire(blocking=False):
            return self._busy("restore")
        try:
            return self._restore_locked(archive_bytes, key_source, strategy, overrides, cancel_event)
        except Exception:
            self.state = RestoreState.FAILED
            raise
        finally:
            self._lock.release()

    def _restore_locked(
        self,
        archive_bytes: bytes,
        key_source: KeyMaterialSource,
        strategy: MergeStrategy,
        overrides: Optional[Mapping[str, ConflictChoice]],
        cancel_event: Optional[threading.Event],
    ) -> Result[RestoreSummary, VaultError]:
        # 1. Decrypt
        self.state = RestoreState.DECRYPTING
        if _cancelled(cancel_event):
            return self._restore_failed(RestoreCancelled())
        envelope_result = decode_envelope(archive_bytes)
        if isinstance(envelope_result, Failure):
            return self._restore_failed(envelope_result.failure())
        envelope = envelope_result.unwrap()

        key_result = key_source.key_for(envelope.salt, envelope.iterations)
        if isinstance(key_result, Failure):
            return self._restore_failed(key_result.failure())
        plaintext_result = BackupCrypto.decrypt(
            key_result.unwrap(),
            envelope.iv,
            envelope.ciphertext,
            envelope.auth_tag,
            envelope.info.associated_data(),
        )
        if isinstance(plaintext_result, Failure):
            return self._restore_failed(WrongPasswordOrCorrupted())

        # 2. Parse
        self.state = RestoreState.PARSING
        if _cancelled(cancel_event):
            return self._restore_failed(RestoreCancelled())
        manifest_result = parse_manifest(plaintext_result.unwrap())
        if isinstance(manifest_result, Failure):
            return self._restore_failed(manifest_result.failure())
        manifest = manifest_result.unwrap()
        if ArchiveInfo.from_manifest(manifest) != envelope.info:
            return self._restore_failed(MalformedArchive("Archive header does not match its contents"))

        # 3. Verify every checksum before anything is merged
        self.state = RestoreState.VERIFYING
        if _cancelled(cancel_event):
            return self._restore_failed(RestoreCancelled())
        verified = verify_checksums(manifest)
        if isinstance(verified, Failure):
            return self._restore_failed(verified.failure())

        # 4. Resolve against the current store
        self.state = RestoreState.RESOLVING
        if _cancelled(cancel_event):
            return self._restore_failed(RestoreCancelled())
        snapshot_result = self._store.read_all()
        if isinstance(snapshot_result, Failure):
            return self._restore_failed(snapshot_result.failure())
        plan = resolve(
            manifest.all_records(),
            snapshot_result.unwrap().all_records(),
            strategy,
            overrides,
        )
        summary = RestoreSummary(
            inserted=len(plan.to_insert),
            updated=len(plan.to_update),
            skipped=len(plan.to_leave_unchanged),
            unresolved=len(plan.unresolved_conflicts),
            conflicts=list(plan.unresolved_conflicts),
        )

        if plan.has_unresolved:
            self.state = RestoreState.DONE
            _audit_log("restore.pending_conflicts", "Restore awaiting conflict decisions", {
                "strategy": strategy.value,
                "record_ids": plan.ids("unresolved_conflicts"),
            }, "investigate")
            return Success(summary)

        # 5. Commit atomically; cancellation is no longer honoured past this point
        if _cancelled(cancel_event):
            return self._restore_failed(RestoreCancelled())
        self.state = RestoreState.COMMITTING
        if plan.to_insert or plan.to_update:
            committed = self._store.commit_batch(plan.to_insert, plan.to_update)
            if isinstance(committed, Failure):
                return self._restore_failed(committed.failure())

        summary.committed = True
        self.state = RestoreState.DONE
        self._record_history(
            OPERATION_RESTORE,
            envelope.info,
            hashlib.sha256(archive_bytes).hexdigest(),
            strategy=strategy.value,
            outcome={
                "inserted": summary.inserted,
                "updated": summary.updated,
                "skipped": summary.skipped,
            },
        )
        _audit_log("restore.committed", "Restore committed", {
            "strategy": strategy.value,
            "inserted": summary.inserted,
            "updated": summary.updated,
            "skipped": summary.skipped,
        })
        logger.info(
            "Restore committed (%s): %d inserted, %d updated, %d skipped",
            strategy.value, summary.inserted, summary.updated, summary.skipped,
        )
        return Success(summary)

    # ── Helpers ──────────────────────────────────────────────────────

    def _restore_failed(self, error: VaultError) -> Result[RestoreSummary, VaultError]:
        failed_at = self.state
        self.state = RestoreState.FAILED
        details = {"error": error.code, "step": failed_at.value}
        record_id = getattr(error, "record_id", None)
        if record_id:
            details["record_id"] = record_id
        if isinstance(error, RestoreCancelled):
            _audit_log("restore.cancelled", "Restore cancelled", details)
        else:
            severity = "critical" if error.code == "store_write_failed" else "alert"
            _audit_log("restore.failed", f"Restore failed: {error.code}", details, severity)
        logger.warning("Restore failed during %s: %s", failed_at.value, error.code)
        return Failure(error)

    def _busy(self, operation: str) -> Failure:
        _audit_log("operation.rejected", f"{operation.capitalize()} rejected: another operation is running", {
            "operation": operation,
        }, "investigate")
        return Failure(OperationInProgress())

    def _record_history(
        self,
        operation: str,
        info: ArchiveInfo,
        archive_sha256: str,
        strategy: Optional[str] = None,
        outcome: Optional[Dict[str, int]] = None,
    ) -> None:
        """Ledger writes are best-effort; the operation already succeeded."""
        if self._history is None:
            return
        try:
            self._history.record_event(
                operation,
                record_count=info.record_count,
                store_count=info.store_count,
                archive_sha256=archive_sha256,
                strategy=strategy,
                outcome=outcome,
            )
        except sqlite3.Error:
            logger.warning("Could not record %s in backup history", operation, exc_info=True)


def _key_source(secret: Secret) -> KeyMaterialSource:
    if isinstance(secret, KeyMaterialSource):
        return secret
    if not isinstance(secret, str) or not secret:
        raise ValueError("Password must be a non-empty string.")
    return PasswordKeySource(secret)


def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _audit_log(event_type_value: str, message: str, details: dict, severity: str = "info"):
    """Best-effort audit logging."""
    try:
        from ..core.audit_log import EventSeverity, EventType, log_security_event
        log_security_event(
            EventType(event_type_value),
            EventSeverity(severity),
            message,
            details=details,
        )
    except Exception:
        logger.warning("Audit log failed: %s", message, exc_info=True)
