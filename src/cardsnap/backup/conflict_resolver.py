"""Reconcile an incoming record set against what the store already holds.

Records are matched by (kind, id). Pairs with identical canonical bytes are
never conflicts. For pairs that differ, the caller's MergeStrategy decides:

    REPLACE  incoming wins
    SKIP     existing wins
    MERGE    newer updated_at wins; an exact timestamp tie is left
             unresolved for the caller

Overrides let a caller settle specific conflicts (typically the unresolved
ones from a previous MERGE attempt) and take precedence over the strategy.
They are keyed "<kind>:<id>" (see override_key); a bare id means a card. Output lists are sorted by (kind, id) so the result depends only on
the two input sets, never on their order.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..records.models import Record, RecordKind, record_key
from .archive_codec import record_bytes


class MergeStrategy(str, Enum):
    MERGE = "merge"
    REPLACE = "replace"
    SKIP = "skip"


class ConflictChoice(str, Enum):
    KEEP_EXISTING = "keep_existing"
    TAKE_INCOMING = "take_incoming"


@dataclass(frozen=True)
class Conflict:
    """A same-id pair the resolver could not decide on its own."""

    existing: Record
    incoming: Record

    @property
    def record_id(self) -> str:
        return self.incoming.id

    @property
    def kind(self) -> str:
        return self.incoming.kind.value

    @property
    def key(self) -> str:
        return override_key(self.incoming)

    def to_dict(self) -> dict:
        return {
            "recordId": self.record_id,
            "kind": self.kind,
            "key": self.key,
            "existing": self.existing.to_dict(),
            "incoming": self.incoming.to_dict(),
        }


@dataclass
class MergeResult:
    to_insert: List[Record] = field(default_factory=list)
    to_update: List[Record] = field(default_factory=list)
    to_leave_unchanged: List[Record] = field(default_factory=list)
    unresolved_conflicts: List[Conflict] = field(default_factory=list)

    @property
    def has_unresolved(self) -> bool:
        return bool(self.unresolved_conflicts)

    def ids(self, bucket: str) -> List[str]:
        """Record ids in one of the output lists (handy for callers and tests)."""
        return [
            item.record_id if isinstance(item, Conflict) else item.id
            for item in getattr(self, bucket)
        ]


def override_key(record: Record) -> str:
    """Key naming *record* in an overrides map, e.g. ``"store:s1"``."""
    return f"{record.kind.value}:{record.id}"


def _override_for(
    record: Record, overrides: Mapping[str, ConflictChoice]
) -> Optional[ConflictChoice]:
    choice = overrides.get(override_key(record))
    if choice is None and record.kind is RecordKind.CARD:
        choice = overrides.get(record.id)
    return choice


def _index(records: Iterable[Record]) -> Dict[Tuple[str, str], Record]:
    return {record_key(r): r for r in records}


def _decide(
    existing: Record,
    incoming: Record,
    strategy: MergeStrategy,
    override: Optional[ConflictChoice],
) -> Optional[Record]:
    """Winner of a differing pair, or None when it cannot be decided."""
    if override is ConflictChoice.TAKE_INCOMING:
        return incoming
    if override is ConflictChoice.KEEP_EXISTING:
        return existing
    if strategy is MergeStrategy.REPLACE:
        return incoming
    if strategy is MergeStrategy.SKIP:
        return existing
    if incoming.updated_at > existing.updated_at:
        return incoming
    if incoming.updated_at < existing.updated_at:
        return existing
    return None


def resolve(
    incoming: Iterable[Record],
    existing: Iterable[Record],
    strategy: MergeStrategy,
    overrides: Optional[Mapping[str, ConflictChoice]] = None,
) -> MergeResult:
    """Classify *incoming* against *existing* under *strategy*.

    Args:
        incoming: Records from the archive being restored.
        existing: Records currently in the store.
        strategy: How to settle differing same-id pairs.
        overrides: Optional map from override_key() (or a bare card id)
            to a choice; applies to differing pairs only.

    Returns:
        MergeResult. Only-existing records are not reported; they are never
        touched by a restore.
    """
    if not isinstance(strategy, MergeStrategy):
        raise TypeError(f"strategy must be a MergeStrategy, got {strategy!r}")
    overrides = overrides or {}
    incoming_by_key = _index(incoming)
    existing_by_key = _index(existing)
    result = MergeResult()

    for key in sorted(incoming_by_key):
        new = incoming_by_key[key]
        old = existing_by_key.get(key)
        if old is None:
            result.to_insert.append(new)
            continue
        if record_bytes(old) == record_bytes(new):
            result.to_leave_unchanged.append(old)
            continue

        winner = _decide(old, new, strategy, _override_for(new, overrides))
        if winner is None:
            result.unresolved_conflicts.append(Conflict(existing=old, incoming=new))
        elif winner is new:
            result.to_update.append(new)
        else:
            result.to_leave_unchanged.append(old)

    return result
