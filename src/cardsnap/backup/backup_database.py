"""Backup history ledger: one row per successful backup or restore.

Follows the card store pattern: SQLite + WAL mode via core.db. Archives
themselves are never stored here, only their digest and counts, so the
ledger can answer "when was the last backup" without holding any card data.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union
from uuid import uuid4

from ..core.db import connection, transaction
from ..records.models import format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

OPERATION_BACKUP = "backup"
OPERATION_RESTORE = "restore"


class BackupHistory:
    """SQLite persistence for backup/restore history.

    Args:
        db_path: Path to SQLite database file.  Defaults to data/backup_history.db.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path else Path("data/backup_history.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        """Create the history table if it does not exist."""
        with transaction(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS backup_history (
                    event_id        TEXT UNIQUE NOT NULL,
                    operation       TEXT NOT NULL,
                    created_at      TEXT NOT NULL,
                    record_count    INTEGER DEFAULT 0,
                    store_count     INTEGER DEFAULT 0,
                    archive_sha256  TEXT NOT NULL,
                    strategy        TEXT,
                    outcome         TEXT DEFAULT '{}'
                )
            """)

    # ── CRUD ────────────────────────────────────────────────────────

    def record_event(
        self,
        operation: str,
        record_count: int,
        store_count: int,
        archive_sha256: str,
        strategy: Optional[str] = None,
        outcome: Optional[Dict[str, int]] = None,
    ) -> dict:
        """Insert a ledger row and return it."""
        if operation not in (OPERATION_BACKUP, OPERATION_RESTORE):
            raise ValueError(f"Unknown history operation: {operation!r}")
        event_id = uuid4().hex
        with transaction(self.db_path) as conn:
            conn.execute(
                """INSERT INTO backup_history
                   (event_id, operation, created_at, record_count, store_count,
                    archive_sha256, strategy, outcome)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (event_id, operation, format_timestamp(utc_now()), record_count,
                 store_count, archive_sha256, strategy, json.dumps(outcome or {})),
            )
        return self.get_event(event_id)

    def list_events(self, limit: int = 50, operation: Optional[str] = None) -> List[dict]:
        """Return history rows sorted newest-first."""
        query = "SELECT * FROM backup_history"
        params: list = []
        if operation:
            query += " WHERE operation = ?"
            params.append(operation)
        # rowid breaks ties between rows written within the same microsecond
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        with connection(self.db_path, row_factory=True) as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_dict(r) for r in rows]

    def get_event(self, event_id: str) -> Optional[dict]:
        """Return a single ledger row or None."""
        with connection(self.db_path, row_factory=True) as conn:
            row = conn.execute(
                "SELECT * FROM backup_history WHERE event_id = ?", (event_id,)
            ).fetchone()
        return self._row_to_dict(row) if row else None

    def last_backup_at(self) -> Optional[datetime]:
        """When the most recent backup was created, or None if never."""
        rows = self.list_events(limit=1, operation=OPERATION_BACKUP)
        return parse_timestamp(rows[0]["created_at"]) if rows else None

    # ── helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict:
        d = dict(row)
        try:
            d["outcome"] = json.loads(d.get("outcome") or "{}")
        except (json.JSONDecodeError, TypeError):
            d["outcome"] = {}
        return d
