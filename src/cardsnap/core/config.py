# Core Module - Configuration
#
# Settings come from the environment, optionally seeded from a .env file
# (python-dotenv). Values already present in the environment win over .env.
#
#   CARDSNAP_DATA_DIR             ./data
#   CARDSNAP_DB_PATH              <data_dir>/cards.db
#   CARDSNAP_HISTORY_DB_PATH      <data_dir>/backup_history.db
#   CARDSNAP_AUDIT_LOG_DIR        ./audit_logs
#   CARDSNAP_KDF_ITERATIONS       600000 (150000 to 10000000)
#   CARDSNAP_MIN_PASSWORD_LENGTH  1
#   CARDSNAP_SESSION_TOKEN        unset (API mints one; launchers may supply >= 32 chars)

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from ..backup.backup_crypto import BackupCrypto


@dataclass
class VaultSettings:
    """Runtime configuration for the CLI and the HTTP app."""

    data_dir: Path = Path("./data")
    db_path: Optional[Path] = None
    history_db_path: Optional[Path] = None
    audit_log_dir: Path = Path("./audit_logs")
    kdf_iterations: int = BackupCrypto.PBKDF2_ITERATIONS
    min_password_length: int = 1
    session_token: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        self.audit_log_dir = Path(self.audit_log_dir)
        self.db_path = Path(self.db_path) if self.db_path else self.data_dir / "cards.db"
        self.history_db_path = (
            Path(self.history_db_path) if self.history_db_path
            else self.data_dir / "backup_history.db"
        )
        if not BackupCrypto.MIN_ITERATIONS <= self.kdf_iterations <= BackupCrypto.MAX_ITERATIONS:
            raise ValueError(
                f"CARDSNAP_KDF_ITERATIONS must be between {BackupCrypto.MIN_ITERATIONS} "
                f"and {BackupCrypto.MAX_ITERATIONS}"
            )
        if self.min_password_length < 1:
            raise ValueError("CARDSNAP_MIN_PASSWORD_LENGTH must be >= 1")

    @classmethod
    def from_env(cls, dotenv_path: Optional[Union[str, Path]] = None) -> "VaultSettings":
        """Create settings from environment variables (after loading .env)."""
        load_dotenv(dotenv_path, override=False)
        return cls(
            data_dir=Path(os.getenv("CARDSNAP_DATA_DIR", "./data")),
            db_path=os.getenv("CARDSNAP_DB_PATH") or None,
            history_db_path=os.getenv("CARDSNAP_HISTORY_DB_PATH") or None,
            audit_log_dir=Path(os.getenv("CARDSNAP_AUDIT_LOG_DIR", "./audit_logs")),
            kdf_iterations=int(
                os.getenv("CARDSNAP_KDF_ITERATIONS", BackupCrypto.PBKDF2_ITERATIONS)
            ),
            min_password_length=int(os.getenv("CARDSNAP_MIN_PASSWORD_LENGTH", 1)),
            session_token=os.getenv("CARDSNAP_SESSION_TOKEN") or None,
        )

    def check_password(self, password: str) -> None:
        """Raise ValueError if *password* is shorter than the configured minimum."""
        if len(password) < self.min_password_length:
            raise ValueError(
                f"Password must be at least {self.min_password_length} characters."
            )
