"""Typed failures for the backup/restore pipeline.

These are returned inside ``returns.result.Failure`` rather than raised; only
contract violations (empty password, bad key length) raise ``ValueError``.
Every error carries a stable ``code`` for the HTTP and CLI layers and a
``user_message`` that is safe to show.
"""

from typing import Optional


class VaultError(Exception):
    """Base class for backup/restore failures."""

    code = "vault_error"
    user_message = "The operation could not be completed."

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.user_message)
        self.detail = detail or self.user_message


# ── Cryptographic ────────────────────────────────────────────────────


class CryptoError(VaultError):
    code = "crypto_error"


class AuthenticationFailed(CryptoError):
    """AEAD tag did not verify. Deliberately silent about the cause."""

    code = "authentication_failed"
    user_message = "The archive could not be decrypted."


class KeyDerivationFailed(CryptoError):
    code = "key_derivation_failed"
    user_message = "Could not derive an encryption key."


# ── Structural ───────────────────────────────────────────────────────


class CodecError(VaultError):
    code = "codec_error"
    user_message = "The archive is not readable."


class MalformedArchive(CodecError):
    code = "malformed_archive"
    user_message = "The archive is damaged or is not a CardSnap backup."


class UnsupportedSchemaVersion(CodecError):
    code = "unsupported_schema_version"

    def __init__(self, found: int, supported: int):
        self.found = found
        self.supported = supported
        self.user_message = (
            "This backup was made by a newer version of the app. "
            "Update the app to restore it."
        )
        super().__init__(f"Schema version {found} is newer than supported version {supported}")


# ── Integrity ────────────────────────────────────────────────────────


class IntegrityError(VaultError):
    code = "integrity_error"
    user_message = "The archive failed its integrity check."


class ChecksumMismatch(IntegrityError):
    code = "checksum_mismatch"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Checksum mismatch for record {record_id}")


# ── Resource ─────────────────────────────────────────────────────────


class OperationInProgress(VaultError):
    code = "operation_in_progress"
    user_message = "Another backup or restore is already running."


class StoreError(VaultError):
    """Raised/returned by Record Store adapters."""

    code = "store_error"
    user_message = "The card store could not be accessed."


class StoreWriteFailed(StoreError):
    code = "store_write_failed"
    user_message = "Restored cards could not be saved. Nothing was changed."


class EmptyStoreError(StoreError):
    """The record store could not be read for a backup snapshot."""

    code = "store_read_failed"
    user_message = "Cards could not be read for backup."


class RestoreCancelled(VaultError):
    code = "restore_cancelled"
    user_message = "Restore was cancelled. Nothing was changed."


# ── Restore-facing ───────────────────────────────────────────────────


class WrongPasswordOrCorrupted(VaultError):
    """Single user-facing error for both a bad password and a tampered archive."""

    code = "wrong_password_or_corrupted"
    user_message = "Wrong password, or the archive is corrupted."


# Result error types named by operation
BackupError = VaultError
ValidationError = CodecError
RestoreError = VaultError
