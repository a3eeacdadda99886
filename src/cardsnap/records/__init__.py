"""Card and store records, and the stores that hold them."""

from .models import CardRecord, CodeFormat, RecordKind, RecordValidationError, StoreRecord
from .record_store import InMemoryRecordStore, RecordSnapshot, RecordStore, StorageStats
from .sqlite_store import SqliteRecordStore

__all__ = [
    "CardRecord",
    "CodeFormat",
    "InMemoryRecordStore",
    "RecordKind",
    "RecordSnapshot",
    "RecordStore",
    "RecordValidationError",
    "SqliteRecordStore",
    "StorageStats",
    "StoreRecord",
]
