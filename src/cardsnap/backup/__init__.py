"""CardSnap Vault - encrypted backup and restore of the card store."""

from .archive_codec import ArchiveInfo, Manifest
from .backup_crypto import BackupCrypto, KeyMaterialSource, PasswordKeySource
from .backup_database import BackupHistory
from .backup_service import BackupService, EncryptedArchive, RestoreState, RestoreSummary
from .conflict_resolver import ConflictChoice, MergeStrategy

__all__ = [
    "ArchiveInfo",
    "BackupCrypto",
    "BackupHistory",
    "BackupService",
    "ConflictChoice",
    "EncryptedArchive",
    "KeyMaterialSource",
    "Manifest",
    "MergeStrategy",
    "PasswordKeySource",
    "RestoreState",
    "RestoreSummary",
]
