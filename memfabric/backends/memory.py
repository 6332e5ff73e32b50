"""In-process document backend with token-overlap text search."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..core.schemas import Record, SearchHit, SearchOptions
from .base import (
    BackendAdapter,
    Query,
    SimulatedBackendMixin,
    WriteAck,
    matches_filters,
    overlap_score,
    rank,
    should_replace,
)


@dataclass
class _Stored:
    record: Record
    changed_at: float


class InMemoryBackend(SimulatedBackendMixin, BackendAdapter):
    """
    Dict-backed document store.

    Keeps one version per record id together with the local change time,
    which drives pull_delta. bulk_apply skips versions it already holds so
    reconciliation between peers settles instead of echoing.
    """

    kind = "memory"

    def __init__(self, name: str, latency_s: float = 0.0, offline: bool = False, clock=time.time):
        super().__init__(name)
        self.latency_s = latency_s
        self.offline = offline
        self.closed = False
        self._clock = clock
        self._records: Dict[str, _Stored] = {}
        self._lock = threading.Lock()

    def _put(self, record: Record) -> bool:
        with self._lock:
            current = self._records.get(record.id)
            if current is not None and not should_replace(current.record, record):
                return False
            self._records[record.id] = _Stored(record.without_outcomes(), self._clock())
            return True

    async def write(self, record: Record) -> WriteAck:
        await self._simulate()
        self._put(record)
        return WriteAck(backend_record_id=record.id)

    async def search(self, query: Query, options: SearchOptions, limit: int) -> List[SearchHit]:
        await self._simulate()
        if not isinstance(query, str):
            return []
        scored = {
            rid: overlap_score(query, stored.record.content)
            for rid, stored in list(self._records.items())
            if matches_filters(stored.record, options)
        }
        return rank(scored, self.name, limit)

    async def pull_delta(self, since: float) -> List[Record]:
        await self._simulate()
        changed = [s for s in list(self._records.values()) if s.changed_at > since]
        changed.sort(key=lambda s: (s.changed_at, s.record.id))
        return [s.record for s in changed]

    async def bulk_apply(self, records: Sequence[Record]) -> int:
        await self._simulate()
        return sum(1 for record in records if self._put(record))

    async def disconnect(self) -> None:
        self.closed = True

    # Inspection helpers

    def get(self, record_id: str) -> Optional[Record]:
        stored = self._records.get(record_id)
        return stored.record if stored else None

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records

    def __len__(self) -> int:
        return len(self._records)
