"""
Search fusion: fan a query out to every backend and merge the hits.

Fusion algorithm (fuse_hits):
1. drop hits with non-finite scores, group the rest by record id
2. keep the maximum score seen for each id (scores are not normalized)
3. order by score desc, then by the priority of the best-scoring backend
   (lower wins), then by record id
The output depends only on the hit set and the priorities, never on the
order hits arrived in.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from ..backends.base import Query, matches_filters
from ..core.schemas import SearchHit, SearchOptions, SearchResponse, SearchResult
from ..errors import AllBackendsFailed, EmptyRegistryError, InvalidRequestError
from ..index.unified import UnifiedIndex
from ..ops.fanout import fan_out
from ..registry import BackendRegistry
from ..telemetry import get_logger, log_step, new_run_id

logger = get_logger(__name__)

# Priority assigned to hits from backends missing in the priority map
UNKNOWN_PRIORITY = 1 << 30


@dataclass
class FusedHit:
    """One deduplicated hit."""

    record_id: str
    score: float
    best_backend: str
    best_priority: int
    contributing_backends: List[str] = field(default_factory=list)


def fuse_hits(hits: Iterable[SearchHit], priorities: Mapping[str, int]) -> List[FusedHit]:
    """
    Deduplicate and rank hits from several backends.

    Args:
        hits: raw hits from any number of backends
        priorities: backend name -> priority (lower is more authoritative)

    Returns:
        FusedHit list, best first
    """
    groups: Dict[str, List[SearchHit]] = {}
    for hit in hits:
        if not math.isfinite(hit.score):
            continue
        groups.setdefault(hit.record_id, []).append(hit)

    def prio(backend: str) -> int:
        return priorities.get(backend, UNKNOWN_PRIORITY)

    fused = []
    for record_id, group in groups.items():
        best_score = max(h.score for h in group)
        best = min(
            (h for h in group if h.score == best_score),
            key=lambda h: (prio(h.source_backend), h.source_backend),
        )
        contributors = sorted({h.source_backend for h in group}, key=lambda b: (prio(b), b))
        fused.append(FusedHit(
            record_id=record_id,
            score=best_score,
            best_backend=best.source_backend,
            best_priority=prio(best.source_backend),
            contributing_backends=contributors,
        ))

    fused.sort(key=lambda f: (-f.score, f.best_priority, f.record_id))
    return fused


class SearchFusionEngine:
    """Concurrent search across backends with deadline-bounded fusion."""

    def __init__(
        self,
        registry: BackendRegistry,
        index: UnifiedIndex,
        deadline_s: float = 3.0,
        default_limit: int = 20,
        per_backend_limit_factor: int = 2,
    ):
        self.registry = registry
        self.index = index
        self.deadline_s = deadline_s
        self.default_limit = default_limit
        self.per_backend_limit_factor = per_backend_limit_factor

    async def search(self, query: Query, options: Optional[SearchOptions] = None) -> SearchResponse:
        """
        Search every backend and return fused results.

        Raises:
            InvalidRequestError: empty query
            EmptyRegistryError: no backend registered
            AllBackendsFailed: no backend answered in time
        """
        options = options or SearchOptions()
        if isinstance(query, str):
            if not query.strip():
                raise InvalidRequestError("query must not be empty")
        elif len(query) == 0:
            raise InvalidRequestError("query vector must not be empty")

        adapters = self.registry.adapters()
        if not adapters:
            raise EmptyRegistryError("no backends registered")

        limit = options.limit or self.default_limit
        backend_limit = limit * self.per_backend_limit_factor
        run_id = new_run_id()
        started = time.perf_counter()

        results = await fan_out(
            {a.name: (lambda a=a: a.search(query, options, backend_limit)) for a in adapters},
            self.deadline_s,
        )

        hits: List[SearchHit] = []
        contributing, failed = [], []
        for name, result in results.items():
            if result.ok:
                contributing.append(name)
                hits.extend(result.value or [])
            else:
                failed.append(name)
                logger.warning("backend_search_failed", backend=name, timed_out=result.timed_out,
                               error=result.error_text)

        if not contributing:
            raise AllBackendsFailed("search", [r.to_outcome() for r in results.values()])

        resolved, unresolved = [], []
        for fused in fuse_hits(hits, self.registry.priorities()):
            record = self.index.get(fused.record_id)
            if record is None:
                unresolved.append(fused.record_id)
                continue
            # Backends filter too; the canonical record has the final say
            if not matches_filters(record, options):
                continue
            resolved.append(SearchResult(
                id=record.id,
                content=record.content,
                metadata=dict(record.metadata),
                score=fused.score,
                contributing_backends=fused.contributing_backends,
                integrity_hash=record.integrity_hash,
            ))
            if len(resolved) >= limit:
                break

        elapsed_ms = (time.perf_counter() - started) * 1000
        if unresolved:
            logger.info("search_unresolved_hits", count=len(unresolved))
        logger.info("search_fused", results=len(resolved), contributing=contributing, failed=failed)
        log_step(run_id, "search", elapsed_ms, hits=len(hits), results=len(resolved), failed=failed)

        return SearchResponse(
            results=resolved,
            contributing_backends=contributing,
            failed_backends=failed,
            unresolved_ids=unresolved,
            elapsed_ms=round(elapsed_ms, 3),
        )
