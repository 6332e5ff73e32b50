"""
Durable key-value backend on SQLite.

Stores each record as JSON in the `records` table of a KVStore. The row
timestamp is the local change time and drives pull_delta. Blocking SQLite
calls run in worker threads so they never stall the event loop.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Sequence

from ..core.schemas import Record, SearchHit, SearchOptions
from ..errors import BackendRejected, BackendUnavailable
from ..persist.sqlite_store import KVStore
from .base import BackendAdapter, Query, WriteAck, matches_filters, overlap_score, rank, should_replace

TABLE = "records"


class SqliteBackend(BackendAdapter):
    """Record store persisted in a local SQLite file."""

    kind = "sqlite"

    def __init__(self, name: str, path: Path | str):
        super().__init__(name)
        self.path = path
        self.kv = KVStore(path, tables=(TABLE,))
        self._write_lock = threading.Lock()

    def _load(self, raw: bytes) -> Record:
        return Record.from_storage_dict(json.loads(raw))

    def _current(self, record_id: str) -> Optional[Record]:
        raw = self.kv.get(TABLE, record_id)
        return self._load(raw) if raw is not None else None

    def _put(self, record: Record) -> bool:
        with self._write_lock:
            if not should_replace(self._current(record.id), record):
                return False
            value = json.dumps(record.to_storage_dict()).encode("utf-8")
            self.kv.set(TABLE, record.id, value)
            return True

    async def _run(self, fn, *args):
        if self.kv.closed:
            raise BackendUnavailable(self.name, "backend disconnected")
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.IntegrityError as e:
            raise BackendRejected(self.name, str(e)) from e
        except sqlite3.Error as e:
            raise BackendUnavailable(self.name, str(e)) from e

    async def write(self, record: Record) -> WriteAck:
        await self._run(self._put, record)
        return WriteAck(backend_record_id=record.id)

    def _search_sync(self, query: str, options: SearchOptions, limit: int) -> List[SearchHit]:
        scored = {}
        for key, raw in self.kv.items(TABLE):
            record = self._load(raw)
            if matches_filters(record, options):
                scored[key] = overlap_score(query, record.content)
        return rank(scored, self.name, limit)

    async def search(self, query: Query, options: SearchOptions, limit: int) -> List[SearchHit]:
        if not isinstance(query, str):
            return []
        return await self._run(self._search_sync, query, options, limit)

    def _pull_sync(self, since: float) -> List[Record]:
        return [self._load(raw) for _, raw, _ in self.kv.items_since(TABLE, since)]

    async def pull_delta(self, since: float) -> List[Record]:
        return await self._run(self._pull_sync, since)

    def _apply_sync(self, records: Sequence[Record]) -> int:
        return sum(1 for record in records if self._put(record))

    async def bulk_apply(self, records: Sequence[Record]) -> int:
        return await self._run(self._apply_sync, list(records))

    async def disconnect(self) -> None:
        self.kv.close()
