"""
Snapshot and restore of the unified index.

The index lives in memory; a KVStore table `index_snapshot` can hold a periodic
copy so a restarted process starts warm. Outcome vectors are kept in the
snapshot, unlike the per-backend storage format.
"""

import json

from ..core.schemas import Record
from ..persist.sqlite_store import KVStore
from .unified import UnifiedIndex

TABLE = "index_snapshot"


def snapshot_index(index: UnifiedIndex, kv: KVStore) -> int:
    """
    Write every committed record to kv. Returns the number of records written.
    """
    items = [
        (record.id, json.dumps(record.model_dump()).encode("utf-8"))
        for record in index.scan()
    ]
    if not items:
        return 0
    return kv.set_many(TABLE, items)


def restore_index(kv: KVStore, index: UnifiedIndex | None = None) -> UnifiedIndex:
    """
    Load a snapshot into `index` (a new one by default) through upsert,
    so restoring never regresses newer entries already present.
    """
    index = index if index is not None else UnifiedIndex()
    for _, raw in kv.items(TABLE):
        index.upsert(Record(**json.loads(raw)))
    return index
