"""
memfabric: multi-backend memory orchestration.

Accepts a store or search request once, fans it out across several
heterogeneous backends, reconciles them in the background and fuses their
results into one ranked, deduplicated view with integrity metadata.
"""

from .core.schemas import (
    BackendDescriptor,
    BackendOutcome,
    FusionReport,
    Record,
    SearchHit,
    SearchOptions,
    SearchResponse,
    SearchResult,
    StoreResult,
)
from .errors import (
    AllBackendsFailed,
    AnchorFailure,
    BackendRejected,
    BackendUnavailable,
    EmptyRegistryError,
    IndexConflict,
    InvalidRecordError,
    InvalidRequestError,
    MemfabricError,
    OrchestratorClosed,
)
from .orchestrator import MemoryOrchestrator

__version__ = "0.1.0"

__all__ = [
    "BackendDescriptor",
    "BackendOutcome",
    "FusionReport",
    "Record",
    "SearchHit",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "StoreResult",
    "AllBackendsFailed",
    "AnchorFailure",
    "BackendRejected",
    "BackendUnavailable",
    "EmptyRegistryError",
    "IndexConflict",
    "InvalidRecordError",
    "InvalidRequestError",
    "MemfabricError",
    "OrchestratorClosed",
    "MemoryOrchestrator",
]
