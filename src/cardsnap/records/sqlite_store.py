"""SQLite-backed card store.

Follows the backup history pattern: SQLite + WAL via core.db, schema created
on first use, rows mapped through the record models' wire dicts.

Restore batches go through ``core.db.transaction()`` so a failed insert or
update rolls back everything written earlier in the same batch.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Optional, Sequence, Union

from returns.result import Failure, Result, Success

from ..core.db import connection, transaction
from ..core.errors import EmptyStoreError, StoreError, StoreWriteFailed
from .models import CardRecord, Record, StoreRecord
from .record_store import RecordSnapshot, RecordStore

logger = logging.getLogger(__name__)

_CARD_COLUMNS = (
    "id, name, store_id, code, code_format, notes, color_hex, image_ref, "
    "archived, created_at, updated_at"
)
_STORE_COLUMNS = (
    "id, brand_name, country_code, latitude, longitude, supported_formats, updated_at"
)


class SqliteRecordStore(RecordStore):
    """Cards and stores in one SQLite file.

    Args:
        db_path: Path to SQLite database file.  Defaults to data/cards.db.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path else Path("data/cards.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        """Create the cards and stores tables if they do not exist."""
        with transaction(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS stores (
                    id                TEXT PRIMARY KEY,
                    brand_name        TEXT NOT NULL,
                    country_code      TEXT NOT NULL,
                    latitude          REAL,
                    longitude         REAL,
                    supported_formats TEXT DEFAULT '[]',
                    updated_at        TEXT NOT NULL
                )
            """)
            # store_id is a weak reference: no FOREIGN KEY, no cascade
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cards (
                    id          TEXT PRIMARY KEY,
                    name        TEXT NOT NULL,
                    store_id    TEXT,
                    code        TEXT NOT NULL,
                    code_format TEXT NOT NULL,
                    notes       TEXT,
                    color_hex   TEXT,
                    image_ref   TEXT,
                    archived    INTEGER DEFAULT 0,
                    created_at  TEXT NOT NULL,
                    updated_at  TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_cards_store ON cards(store_id)")

    # ── Port ─────────────────────────────────────────────────────────

    def read_all(self) -> Result[RecordSnapshot, StoreError]:
        try:
            with connection(self.db_path, row_factory=True) as conn:
                # One read transaction so cards and stores come from the same state
                conn.execute("BEGIN")
                card_rows = conn.execute(
                    f"SELECT {_CARD_COLUMNS} FROM cards ORDER BY id"
                ).fetchall()
                store_rows = conn.execute(
                    f"SELECT {_STORE_COLUMNS} FROM stores ORDER BY id"
                ).fetchall()
                conn.rollback()
            return Success(
                RecordSnapshot(
                    records=[self._row_to_card(r) for r in card_rows],
                    stores=[self._row_to_store(r) for r in store_rows],
                )
            )
        except (sqlite3.Error, ValueError) as e:
            logger.warning("Card store read failed: %s", e)
            return Failure(EmptyStoreError(str(e)))

    def commit_batch(
        self, inserts: Sequence[Record], updates: Sequence[Record]
    ) -> Result[None, StoreError]:
        try:
            with transaction(self.db_path) as conn:
                for record in inserts:
                    self._insert(conn, record)
                for record in updates:
                    if self._update(conn, record) == 0:
                        raise StoreWriteFailed(
                            f"Update of missing {record.kind.value} {record.id}"
                        )
        except StoreWriteFailed as e:
            logger.warning("Restore batch rolled back: %s", e)
            return Failure(e)
        except sqlite3.Error as e:
            logger.warning("Restore batch rolled back: %s", e)
            return Failure(StoreWriteFailed(str(e)))
        return Success(None)

    # ── CRUD primitives ──────────────────────────────────────────────

    def get_card(self, card_id: str) -> Optional[CardRecord]:
        with connection(self.db_path, row_factory=True) as conn:
            row = conn.execute(
                f"SELECT {_CARD_COLUMNS} FROM cards WHERE id = ?", (card_id,)
            ).fetchone()
        return self._row_to_card(row) if row else None

    def get_store(self, store_id: str) -> Optional[StoreRecord]:
        with connection(self.db_path, row_factory=True) as conn:
            row = conn.execute(
                f"SELECT {_STORE_COLUMNS} FROM stores WHERE id = ?", (store_id,)
            ).fetchone()
        return self._row_to_store(row) if row else None

    def _save(self, record: Record) -> None:
        with transaction(self.db_path) as conn:
            table = "cards" if isinstance(record, CardRecord) else "stores"
            conn.execute(f"DELETE FROM {table} WHERE id = ?", (record.id,))  # noqa: S608
            self._insert(conn, record)

    # ── helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _insert(conn: sqlite3.Connection, record: Record) -> None:
        if isinstance(record, CardRecord):
            d = record.to_dict()
            conn.execute(
                f"INSERT INTO cards ({_CARD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (d["id"], d["name"], d["storeId"], d["code"], d["codeFormat"],
                 d["notes"], d["colorHex"], d["imageRef"], int(d["archived"]),
                 d["createdAt"], d["updatedAt"]),
            )
        else:
            d = record.to_dict()
            conn.execute(
                f"INSERT INTO stores ({_STORE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (d["id"], d["brandName"], d["countryCode"], d["latitude"],
                 d["longitude"], json.dumps(d["supportedFormats"]), d["updatedAt"]),
            )

    @staticmethod
    def _update(conn: sqlite3.Connection, record: Record) -> int:
        d = record.to_dict()
        if isinstance(record, CardRecord):
            cursor = conn.execute(
                """UPDATE cards SET name = ?, store_id = ?, code = ?, code_format = ?,
                       notes = ?, color_hex = ?, image_ref = ?, archived = ?,
                       created_at = ?, updated_at = ?
                   WHERE id = ?""",
                (d["name"], d["storeId"], d["code"], d["codeFormat"], d["notes"],
                 d["colorHex"], d["imageRef"], int(d["archived"]), d["createdAt"],
                 d["updatedAt"], d["id"]),
            )
        else:
            cursor = conn.execute(
                """UPDATE stores SET brand_name = ?, country_code = ?, latitude = ?,
                       longitude = ?, supported_formats = ?, updated_at = ?
                   WHERE id = ?""",
                (d["brandName"], d["countryCode"], d["latitude"], d["longitude"],
                 json.dumps(d["supportedFormats"]), d["updatedAt"], d["id"]),
            )
        return cursor.rowcount

    @staticmethod
    def _row_to_card(row: sqlite3.Row) -> CardRecord:
        return CardRecord.from_dict({
            "id": row["id"],
            "name": row["name"],
            "storeId": row["store_id"],
            "code": row["code"],
            "codeFormat": row["code_format"],
            "notes": row["notes"],
            "colorHex": row["color_hex"],
            "imageRef": row["image_ref"],
            "archived": bool(row["archived"]),
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        })

    @staticmethod
    def _row_to_store(row: sqlite3.Row) -> StoreRecord:
        try:
            formats = json.loads(row["supported_formats"] or "[]")
        except json.JSONDecodeError:
            formats = []
        return StoreRecord.from_dict({
            "id": row["id"],
            "brandName": row["brand_name"],
            "countryCode": row["country_code"],
            "latitude": row["latitude"],
            "longitude": row["longitude"],
            "supportedFormats": formats,
            "updatedAt": row["updated_at"],
        })
