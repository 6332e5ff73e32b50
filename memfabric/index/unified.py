"""
Unified index: the single authoritative id -> record mapping.

Concurrency discipline:
- Readers never lock. Entries are immutable Record objects swapped in with
  a single dict assignment, so a reader sees either the old or the new
  version, never a half-applied one.
- Writers are serialized per record id through a fixed set of striped
  locks; writes to unrelated ids proceed independently.

Ordering is last-writer-wins on Record.timestamp, not on when upsert is
called, so late reconciliation traffic cannot regress a record.
"""

import threading
import zlib
from typing import Callable, Dict, Iterable, List, Optional

from ..core.schemas import BackendOutcome, Record
from ..errors import IndexConflict
from ..telemetry import get_logger

logger = get_logger(__name__)


def merge_outcomes(current: Iterable[BackendOutcome], incoming: Iterable[BackendOutcome]) -> List[BackendOutcome]:
    """
    Union of two outcome vectors keyed by backend name.

    A success is never downgraded by a later failure for the same version:
    the backend did accept that version at some point.
    """
    merged: Dict[str, BackendOutcome] = {o.backend: o for o in current}
    for outcome in incoming:
        existing = merged.get(outcome.backend)
        if existing is not None and existing.success and not outcome.success:
            continue
        merged[outcome.backend] = outcome
    return list(merged.values())


class UnifiedIndex:
    """
    In-memory record index with per-key write serialization.

    Usage:
        >>> index = UnifiedIndex()
        >>> index.upsert(record, outcomes)
        True
        >>> index.get(record.id).integrity_hash == record.integrity_hash
        True
    """

    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._records: Dict[str, Record] = {}
        self._locks = [threading.Lock() for _ in range(stripes)]
        self.conflicts = 0

    def _lock_for(self, record_id: str) -> threading.Lock:
        return self._locks[zlib.crc32(record_id.encode("utf-8")) % len(self._locks)]

    def _check(self, current: Optional[Record], incoming: Record) -> str:
        """Classify an incoming version: 'new', 'replace', 'merge' or raise IndexConflict."""
        if current is None:
            return "new"
        if incoming.timestamp > current.timestamp:
            return "replace"
        if incoming.timestamp < current.timestamp:
            raise IndexConflict(incoming.id, current.timestamp, incoming.timestamp)
        if incoming.integrity_hash == current.integrity_hash:
            return "merge"
        # Same timestamp, different content: order by digest so every
        # replica converges on the same version
        if incoming.integrity_hash > current.integrity_hash:
            return "replace"
        raise IndexConflict(incoming.id, current.timestamp, incoming.timestamp)

    def upsert(self, record: Record, outcomes: Optional[Iterable[BackendOutcome]] = None) -> bool:
        """
        Commit a record version with its backend outcomes.

        - newer version: replaces the entry (outcomes = the given ones)
        - same version: merges outcomes and anchor state into the entry
        - older version: ignored and logged as an index conflict

        Returns:
            True if the index changed
        """
        outcomes = list(outcomes) if outcomes is not None else list(record.backend_outcomes)

        with self._lock_for(record.id):
            current = self._records.get(record.id)
            try:
                action = self._check(current, record)
            except IndexConflict as conflict:
                self.conflicts += 1
                logger.info(
                    "index_conflict",
                    record_id=conflict.record_id,
                    current_ts=conflict.current_ts,
                    incoming_ts=conflict.incoming_ts,
                )
                return False

            if action == "merge":
                updated = current.model_copy(update={
                    "backend_outcomes": merge_outcomes(current.backend_outcomes, outcomes),
                    "anchored": current.anchored or record.anchored,
                    "anchor_ref": current.anchor_ref or record.anchor_ref,
                })
                if updated == current:
                    return False
            else:
                updated = record.model_copy(update={"backend_outcomes": outcomes})

            self._records[record.id] = updated
            return True

    def record_outcomes(self, record_id: str, timestamp: float, outcomes: Iterable[BackendOutcome]) -> bool:
        """Merge outcomes into the entry only if it still holds the version at `timestamp`."""
        with self._lock_for(record_id):
            current = self._records.get(record_id)
            if current is None or current.timestamp != timestamp:
                return False
            merged = merge_outcomes(current.backend_outcomes, outcomes)
            self._records[record_id] = current.model_copy(update={"backend_outcomes": merged})
            return True

    def mark_anchored(self, record_id: str, integrity_hash: str, anchor_ref: str) -> bool:
        """Record a ledger reference if the entry still carries the anchored digest."""
        with self._lock_for(record_id):
            current = self._records.get(record_id)
            if current is None or current.integrity_hash != integrity_hash:
                return False
            self._records[record_id] = current.model_copy(update={"anchored": True, "anchor_ref": anchor_ref})
            return True

    def get(self, record_id: str) -> Optional[Record]:
        return self._records.get(record_id)

    def scan(self, predicate: Optional[Callable[[Record], bool]] = None) -> List[Record]:
        """Committed records matching predicate, ordered by (timestamp, id)."""
        records = list(self._records.values())
        if predicate is not None:
            records = [r for r in records if predicate(r)]
        records.sort(key=lambda r: (r.timestamp, r.id))
        return records

    def ids(self) -> List[str]:
        return list(self._records.keys())

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    def __len__(self) -> int:
        return len(self._records)
