# Core Module - SQLite Connection Helpers
#
# Every CardSnap SQLite database (card store, backup history) opens its
# connections through this module instead of raw `sqlite3.connect()`:
#
#   - WAL journal mode (readers never block the single writer)
#   - busy_timeout to ride out SQLITE_BUSY while a restore commits
#   - foreign_keys enforcement on every connection
#
# `transaction()` is the only way the card store writes a restore batch:
# BEGIN IMMEDIATE takes the write lock up front, and any exception inside the
# block rolls the whole batch back.

import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Iterator, Union


def connect(
    db_path: Union[str, Path],
    *,
    row_factory: bool = False,
    check_same_thread: bool = True,
) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs.

    Args:
        db_path: Path to the database file.
        row_factory: If True, set conn.row_factory = sqlite3.Row.
        check_same_thread: Passed to sqlite3.connect().
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=check_same_thread)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def connection(db_path: Union[str, Path], *, row_factory: bool = False) -> Iterator[sqlite3.Connection]:
    """Connection that is always closed on exit. No implicit commit."""
    with closing(connect(db_path, row_factory=row_factory)) as conn:
        yield conn


@contextmanager
def transaction(db_path: Union[str, Path]) -> Iterator[sqlite3.Connection]:
    """All-or-nothing write block: commit on success, roll back on any error."""
    with connection(db_path) as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()
