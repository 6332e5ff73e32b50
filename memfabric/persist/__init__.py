"""
Persistence helpers.

Provides:
- Stable hashing, record ids and integrity digests
- SQLite-backed KV store used by the sqlite backend and index snapshots
"""

from .hashing import stable_hash, compute_integrity_hash, generate_record_id, DEFAULT_DOMAIN_TAG
from .sqlite_store import KVStore

__all__ = [
    "stable_hash",
    "compute_integrity_hash",
    "generate_record_id",
    "DEFAULT_DOMAIN_TAG",
    "KVStore",
]
