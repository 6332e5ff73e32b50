"""
Backend adapter contract.

Every storage/search system the orchestrator talks to is wrapped in a
BackendAdapter. Adapters raise only for genuine transport or protocol
failures (BackendUnavailable, BackendRejected); "no results" is an empty
list. Timeouts are applied by the caller around each individual call.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from ..core.schemas import Record, SearchHit, SearchOptions
from ..errors import BackendUnavailable

Query = Union[str, Sequence[float]]

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


@dataclass
class WriteAck:
    """Acknowledgement of an accepted write."""

    backend_record_id: Optional[str] = None


class BackendAdapter(ABC):
    """Uniform capability wrapper around one external store."""

    kind: str = "abstract"

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def write(self, record: Record) -> WriteAck:
        """Store one record. Raises BackendUnavailable / BackendRejected."""

    @abstractmethod
    async def search(self, query: Query, options: SearchOptions, limit: int) -> List[SearchHit]:
        """Return at most `limit` hits ordered by descending backend-native score."""

    @abstractmethod
    async def pull_delta(self, since: float) -> List[Record]:
        """
        Records changed on this backend strictly after `since`.

        `since` is a checkpoint taken on the orchestrator clock. Backends with
        their own clock (remote services) should be configured with a
        reconcile_clock_skew_s at least as large as the expected skew.
        """

    @abstractmethod
    async def bulk_apply(self, records: Sequence[Record]) -> int:
        """Apply records pushed from peers. Returns how many were actually applied."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release held connections. Idempotent."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class SimulatedBackendMixin:
    """
    Latency and availability switches for in-process backends.

    Lets a deployment (or a test) model a slow or offline store without a
    network dependency.
    """

    name: str
    latency_s: float = 0.0
    offline: bool = False
    closed: bool = False

    async def _simulate(self) -> None:
        if self.latency_s > 0:
            await asyncio.sleep(self.latency_s)
        if self.offline:
            raise BackendUnavailable(self.name, "backend offline")
        if self.closed:
            raise BackendUnavailable(self.name, "backend disconnected")


def tokenize(text: str) -> List[str]:
    return [t.lower() for t in _TOKEN_RE.findall(text)]


def overlap_score(query: str, content: str) -> float:
    """Fraction of distinct query tokens present in the content."""
    q = set(tokenize(query))
    if not q:
        return 0.0
    c = set(tokenize(content))
    return len(q & c) / len(q)


def _value_matches(expected: Any, actual: Any) -> bool:
    accepted = expected if isinstance(expected, (list, tuple, set)) else [expected]
    if isinstance(actual, (list, tuple)):
        return any(a in accepted for a in actual)
    return actual in accepted


def matches_filters(record: Record, options: SearchOptions) -> bool:
    """
    Apply namespace and required-metadata filters.

    A list value in required_metadata means "any of these"; a list value on
    the record matches when any element is accepted.
    """
    if options.namespace_filter is not None and record.namespace != options.namespace_filter:
        return False
    for key, expected in options.required_metadata.items():
        if key not in record.metadata:
            return False
        if not _value_matches(expected, record.metadata[key]):
            return False
    return True


def should_replace(current: Optional[Record], incoming: Record) -> bool:
    """
    Last-writer-wins on the record's own timestamp.

    Equal timestamps with different digests are ordered by digest so every
    replica converges on the same version.
    """
    if current is None:
        return True
    if incoming.timestamp != current.timestamp:
        return incoming.timestamp > current.timestamp
    return incoming.integrity_hash > current.integrity_hash


def rank(scored: Dict[str, float], backend: str, limit: int) -> List[SearchHit]:
    """Turn {record_id: score} into hits, best first, ids breaking ties."""
    ordered = sorted(
        ((rid, s) for rid, s in scored.items() if s > 0),
        key=lambda x: (-x[1], x[0]),
    )[:limit]
    return [SearchHit(record_id=rid, score=float(s), source_backend=backend) for rid, s in ordered]
