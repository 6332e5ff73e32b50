"""Search fusion and cross-record correlation."""

from .correlate import (
    EvidenceCorrelator,
    FieldConflictPolicy,
    InconsistencyPolicy,
    TimelineConflictPolicy,
)
from .fusion import FusedHit, SearchFusionEngine, fuse_hits

__all__ = [
    "EvidenceCorrelator",
    "FieldConflictPolicy",
    "InconsistencyPolicy",
    "TimelineConflictPolicy",
    "FusedHit",
    "SearchFusionEngine",
    "fuse_hits",
]
