"""
Error kinds raised across the orchestration layer.

Adapter failures (BackendUnavailable, BackendRejected) are converted into
per-backend outcomes by the fan-out primitive and never abort a whole
operation. Only caller input errors and total backend failure surface to
callers as exceptions.
"""

from typing import Any, List, Optional


class MemfabricError(Exception):
    """Base class for all memfabric errors."""


class BackendError(MemfabricError):
    """A failure attributed to one backend."""

    def __init__(self, backend: str, message: str = ""):
        self.backend = backend
        self.message = message
        super().__init__(f"[{backend}] {message}" if message else f"[{backend}]")


class BackendUnavailable(BackendError):
    """Transport failure or timeout. Retried by the next reconciliation tick."""


class BackendRejected(BackendError):
    """The backend refused the request (validation, quota, ...). Not retried."""


class IndexConflict(MemfabricError):
    """A stale upsert tried to regress a record. Resolved by last-writer-wins."""

    def __init__(self, record_id: str, current_ts: float, incoming_ts: float):
        self.record_id = record_id
        self.current_ts = current_ts
        self.incoming_ts = incoming_ts
        super().__init__(
            f"stale write for {record_id}: incoming ts {incoming_ts} < current ts {current_ts}"
        )


class AnchorFailure(MemfabricError):
    """Publishing a digest to the external ledger failed."""


class InvalidRequestError(MemfabricError):
    """Malformed caller input (empty query, unknown fusion kind, ...)."""


class InvalidRecordError(InvalidRequestError):
    """Malformed record content or metadata."""


class EmptyRegistryError(MemfabricError):
    """An operation was requested while no backend is registered."""


class OrchestratorClosed(MemfabricError):
    """The orchestrator is shutting down and accepts no new work."""


class AllBackendsFailed(MemfabricError):
    """Every backend failed for a fan-out operation."""

    def __init__(self, operation: str, outcomes: Optional[List[Any]] = None):
        self.operation = operation
        self.outcomes = outcomes or []
        super().__init__(f"{operation}: no backend succeeded ({len(self.outcomes)} attempted)")
