"""Core data models shared by every orchestration component."""

from .schemas import (
    BackendDescriptor,
    BackendOutcome,
    Contradiction,
    CriticalFinding,
    FusionReport,
    Record,
    SearchHit,
    SearchOptions,
    SearchResponse,
    SearchResult,
    StoreResult,
)

__all__ = [
    "BackendDescriptor",
    "BackendOutcome",
    "Contradiction",
    "CriticalFinding",
    "FusionReport",
    "Record",
    "SearchHit",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "StoreResult",
]
