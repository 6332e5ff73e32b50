"""Vector-search backend using hashed bag-of-words embeddings."""
from __future__ import annotations

import hashlib
import threading
import time
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..core.schemas import Record, SearchHit, SearchOptions
from .base import (
    BackendAdapter,
    Query,
    SimulatedBackendMixin,
    WriteAck,
    matches_filters,
    rank,
    should_replace,
    tokenize,
)


def embed_text(text: str, dimension: int = 256) -> np.ndarray:
    """
    Deterministic hashed embedding: each token adds 1 to a blake2b-chosen bucket.

    Returns:
        L2-normalized float32 vector (all zeros for text without tokens)
    """
    vec = np.zeros(dimension, dtype="float32")
    for token in tokenize(text):
        digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
        vec[int.from_bytes(digest, "big") % dimension] += 1.0
    norm = np.linalg.norm(vec)
    if norm > 0:
        vec /= norm
    return vec


class VectorBackend(SimulatedBackendMixin, BackendAdapter):
    """
    Simple in-memory vector store.

    Accepts text queries (embedded with embed_text) or raw query vectors
    of the configured dimension; scores are cosine similarities.
    """

    kind = "vector"

    def __init__(
        self,
        name: str,
        dimension: int = 256,
        latency_s: float = 0.0,
        offline: bool = False,
        clock=time.time,
    ):
        super().__init__(name)
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension
        self.latency_s = latency_s
        self.offline = offline
        self.closed = False
        self._clock = clock
        self._entries: Dict[str, Tuple[Record, np.ndarray, float]] = {}
        self._lock = threading.Lock()

    def _put(self, record: Record) -> bool:
        with self._lock:
            current = self._entries.get(record.id)
            if current is not None and not should_replace(current[0], record):
                return False
            self._entries[record.id] = (
                record.without_outcomes(),
                embed_text(record.content, self.dimension),
                self._clock(),
            )
            return True

    def _query_vector(self, query: Query) -> Optional[np.ndarray]:
        if isinstance(query, str):
            if not query.strip():
                return None
            return embed_text(query, self.dimension)
        vec = np.asarray(query, dtype="float32")
        if vec.shape != (self.dimension,):
            return None
        norm = np.linalg.norm(vec)
        return vec / norm if norm > 0 else None

    async def write(self, record: Record) -> WriteAck:
        await self._simulate()
        self._put(record)
        return WriteAck(backend_record_id=f"vec:{record.id}")

    async def search(self, query: Query, options: SearchOptions, limit: int) -> List[SearchHit]:
        await self._simulate()
        query_vec = self._query_vector(query)
        if query_vec is None:
            return []

        candidates = [
            (rid, vec) for rid, (record, vec, _) in list(self._entries.items())
            if matches_filters(record, options)
        ]
        if not candidates:
            return []

        matrix = np.stack([vec for _, vec in candidates])
        similarities = matrix @ query_vec
        scored = {rid: float(similarities[i]) for i, (rid, _) in enumerate(candidates)}
        return rank(scored, self.name, limit)

    async def pull_delta(self, since: float) -> List[Record]:
        await self._simulate()
        changed = [(ts, record) for record, _, ts in list(self._entries.values()) if ts > since]
        changed.sort(key=lambda x: (x[0], x[1].id))
        return [record for _, record in changed]

    async def bulk_apply(self, records: Sequence[Record]) -> int:
        await self._simulate()
        return sum(1 for record in records if self._put(record))

    async def disconnect(self) -> None:
        self.closed = True

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
