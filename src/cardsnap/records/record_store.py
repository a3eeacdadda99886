"""Record Store port and the in-memory adapter.

The backup service only ever calls two methods on a store:

    read_all()                      -> Result[RecordSnapshot, StoreError]
    commit_batch(inserts, updates)  -> Result[None, StoreError]

``commit_batch`` must be atomic: either every insert and update lands or the
store is exactly as it was. The remaining methods are the everyday CRUD the
wallet app uses (add, archive, search, stats); they are built on a small set of
primitives so each adapter only implements storage, not behaviour.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from returns.result import Failure, Result, Success

from ..core.errors import EmptyStoreError, StoreError, StoreWriteFailed
from .models import CardRecord, Record, RecordValidationError, StoreRecord

logger = logging.getLogger(__name__)


@dataclass
class RecordSnapshot:
    records: List[CardRecord] = field(default_factory=list)
    stores: List[StoreRecord] = field(default_factory=list)

    def all_records(self) -> List[Record]:
        return [*self.records, *self.stores]


@dataclass
class StorageStats:
    total_cards: int
    active_cards: int
    archived_cards: int
    total_stores: int

    def to_dict(self) -> dict:
        return {
            "total_cards": self.total_cards,
            "active_cards": self.active_cards,
            "archived_cards": self.archived_cards,
            "total_stores": self.total_stores,
        }


class RecordStore(ABC):
    """Transactional port the backup service depends on."""

    @abstractmethod
    def read_all(self) -> Result[RecordSnapshot, StoreError]:
        """Consistent snapshot of every card and store."""

    @abstractmethod
    def commit_batch(
        self, inserts: Sequence[Record], updates: Sequence[Record]
    ) -> Result[None, StoreError]:
        """Atomically insert new records and overwrite existing ones.

        An insert whose id already exists, or an update whose id does not,
        fails the whole batch with StoreWriteFailed.
        """

    @abstractmethod
    def get_card(self, card_id: str) -> Optional[CardRecord]:
        ...

    @abstractmethod
    def get_store(self, store_id: str) -> Optional[StoreRecord]:
        ...

    @abstractmethod
    def _save(self, record: Record) -> None:
        """Insert-or-replace a single record."""

    # ── CRUD helpers ─────────────────────────────────────────────────

    def put_card(self, card: CardRecord) -> CardRecord:
        """Add or replace a card. Raises RecordValidationError on bad data."""
        existing = self.get_card(card.id)
        if existing is not None and existing.created_at != card.created_at:
            raise RecordValidationError(f"Card {card.id}: created_at is immutable")
        card.validate()
        self._save(card)
        return card

    def put_store(self, store: StoreRecord) -> StoreRecord:
        store.validate()
        self._save(store)
        return store

    def archive_card(self, card_id: str) -> Optional[CardRecord]:
        """Soft delete: mark archived and bump updated_at. None if missing."""
        card = self.get_card(card_id)
        if card is None:
            return None
        if card.archived:
            return card
        archived = card.touch(archived=True)
        self._save(archived)
        return archived

    def search_cards(self, query: str, include_archived: bool = False) -> List[CardRecord]:
        """Case-insensitive match on card name or the linked store's brand."""
        snapshot = self._snapshot_or_raise()
        needle = query.strip().lower()
        brands = {s.id: s.brand_name.lower() for s in snapshot.stores}
        hits = []
        for card in snapshot.records:
            if card.archived and not include_archived:
                continue
            brand = brands.get(card.store_id or "", "")
            if needle in card.name.lower() or (brand and needle in brand):
                hits.append(card)
        return sorted(hits, key=lambda c: (c.name.lower(), c.id))

    def cards_by_store(self, store_id: str) -> List[CardRecord]:
        snapshot = self._snapshot_or_raise()
        return sorted(
            (c for c in snapshot.records if c.store_id == store_id), key=lambda c: c.id
        )

    def storage_stats(self) -> StorageStats:
        snapshot = self._snapshot_or_raise()
        archived = sum(1 for c in snapshot.records if c.archived)
        return StorageStats(
            total_cards=len(snapshot.records),
            active_cards=len(snapshot.records) - archived,
            archived_cards=archived,
            total_stores=len(snapshot.stores),
        )

    def _snapshot_or_raise(self) -> RecordSnapshot:
        result = self.read_all()
        if isinstance(result, Failure):
            raise result.failure()
        return result.unwrap()


class InMemoryRecordStore(RecordStore):
    """Dict-backed store. Batches apply to a copy which is swapped in whole.

    ``fail_next_commit`` / ``fail_reads`` simulate a broken disk for tests and
    demos; they never leave partial state behind.
    """

    def __init__(
        self,
        records: Sequence[CardRecord] = (),
        stores: Sequence[StoreRecord] = (),
    ):
        self._lock = threading.Lock()
        self._cards: Dict[str, CardRecord] = {r.id: r for r in records}
        self._stores: Dict[str, StoreRecord] = {s.id: s for s in stores}
        self.fail_next_commit = False
        self.fail_reads = False
        self.commit_count = 0

    def read_all(self) -> Result[RecordSnapshot, StoreError]:
        with self._lock:
            if self.fail_reads:
                return Failure(EmptyStoreError("simulated read failure"))
            return Success(
                RecordSnapshot(
                    records=sorted(self._cards.values(), key=lambda r: r.id),
                    stores=sorted(self._stores.values(), key=lambda s: s.id),
                )
            )

    def commit_batch(
        self, inserts: Sequence[Record], updates: Sequence[Record]
    ) -> Result[None, StoreError]:
        with self._lock:
            if self.fail_next_commit:
                self.fail_next_commit = False
                return Failure(StoreWriteFailed("simulated write failure"))

            cards, stores = dict(self._cards), dict(self._stores)
            for record in inserts:
                table = cards if isinstance(record, CardRecord) else stores
                if record.id in table:
                    return Failure(StoreWriteFailed(f"Insert of existing {record.kind.value} {record.id}"))
                table[record.id] = record
            for record in updates:
                table = cards if isinstance(record, CardRecord) else stores
                if record.id not in table:
                    return Failure(StoreWriteFailed(f"Update of missing {record.kind.value} {record.id}"))
                table[record.id] = record

            self._cards, self._stores = cards, stores
            self.commit_count += 1
        logger.debug("Committed %d inserts, %d updates", len(inserts), len(updates))
        return Success(None)

    def get_card(self, card_id: str) -> Optional[CardRecord]:
        with self._lock:
            return self._cards.get(card_id)

    def get_store(self, store_id: str) -> Optional[StoreRecord]:
        with self._lock:
            return self._stores.get(store_id)

    def _save(self, record: Record) -> None:
        with self._lock:
            if isinstance(record, CardRecord):
                self._cards[record.id] = record
            else:
                self._stores[record.id] = record
