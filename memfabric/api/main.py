"""Main FastAPI application and server startup."""

import os
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException

from .schemas import (
    BackendInfo,
    BackendListResponse,
    FuseRequest,
    HealthResponse,
    ResyncResponse,
    SearchRequest,
    StoreRequest,
)
from ..config.settings import load_settings
from ..core.schemas import FusionReport, Record, SearchOptions, SearchResponse, StoreResult
from ..errors import (
    AllBackendsFailed,
    BackendError,
    EmptyRegistryError,
    InvalidRequestError,
    OrchestratorClosed,
)
from ..orchestrator import MemoryOrchestrator
from ..telemetry import configure_logging, get_logger

logger = get_logger(__name__)

app = FastAPI(
    title="memfabric API",
    description="Multi-backend memory orchestration: store, fused search, correlation",
    version="0.1.0",
)

# Global orchestrator (initialized on startup)
_orchestrator: Optional[MemoryOrchestrator] = None


def get_orchestrator() -> MemoryOrchestrator:
    """Dependency to get the orchestrator."""
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return _orchestrator


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, InvalidRequestError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, (EmptyRegistryError, OrchestratorClosed)):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, AllBackendsFailed):
        return HTTPException(status_code=502, detail={
            "message": str(exc),
            "outcomes": [o.model_dump() for o in exc.outcomes],
        })
    if isinstance(exc, BackendError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@app.on_event("startup")
async def startup_event():
    """Build the orchestrator from MEMFABRIC_CONFIG (JSON) and environment."""
    global _orchestrator

    settings = load_settings(os.environ.get("MEMFABRIC_CONFIG"))
    configure_logging(settings.log_level)
    _orchestrator = MemoryOrchestrator.from_settings(settings)
    await _orchestrator.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    global _orchestrator

    if _orchestrator:
        await _orchestrator.shutdown()
        _orchestrator = None


@app.get("/health", response_model=HealthResponse)
async def health(orch: MemoryOrchestrator = Depends(get_orchestrator)):
    """Health check endpoint."""
    snapshot = orch.snapshot_stats()
    return HealthResponse(
        status="ok" if len(orch.registry) else "degraded",
        backends=orch.registry.names(),
        records=len(orch.index),
        pending_anchors=len(orch.anchor.pending()),
        snapshot_records=snapshot["count"] if snapshot else None,
        last_snapshot_ts=(snapshot["newest_ts"] or None) if snapshot else None,
    )


@app.post("/store", response_model=StoreResult)
async def store(request: StoreRequest, orch: MemoryOrchestrator = Depends(get_orchestrator)):
    """
    Store content on every backend.

    Partial success is a 200 with backends_accepted < backends_total;
    only total failure is an error (502).
    """
    try:
        return await orch.store(request.content, request.metadata, record_id=request.record_id)
    except (InvalidRequestError, EmptyRegistryError, AllBackendsFailed, OrchestratorClosed) as e:
        raise _http_error(e)


@app.post("/search", response_model=SearchResponse)
async def search(request: SearchRequest, orch: MemoryOrchestrator = Depends(get_orchestrator)):
    """Fan-out search with deduplication and ranking."""
    options = SearchOptions(
        namespace_filter=request.namespace_filter,
        limit=request.limit,
        required_metadata=request.required_metadata,
    )
    try:
        return await orch.search(request.query, options)
    except (InvalidRequestError, EmptyRegistryError, AllBackendsFailed, OrchestratorClosed) as e:
        raise _http_error(e)


@app.post("/fuse", response_model=FusionReport)
async def fuse(request: FuseRequest, orch: MemoryOrchestrator = Depends(get_orchestrator)):
    """Correlate records for pairwise inconsistencies."""
    try:
        return await orch.fuse(request.record_ids, request.fusion_kind)
    except (InvalidRequestError, OrchestratorClosed) as e:
        raise _http_error(e)


@app.get("/records/{record_id}", response_model=Record)
async def get_record(record_id: str, orch: MemoryOrchestrator = Depends(get_orchestrator)):
    """Canonical record with its backend outcomes."""
    record = orch.get_record(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Record {record_id} not found")
    return record


@app.get("/backends", response_model=BackendListResponse)
async def list_backends(orch: MemoryOrchestrator = Depends(get_orchestrator)):
    """Registered backends in priority order."""
    return BackendListResponse(backends=[BackendInfo(**d.model_dump()) for d in orch.backends()])


@app.post("/backends/{name}/resync", response_model=ResyncResponse)
async def resync_backend(name: str, orch: MemoryOrchestrator = Depends(get_orchestrator)):
    """Push every indexed record to one backend (manual full resync)."""
    try:
        applied = await orch.full_resync(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Backend {name} not registered")
    except BackendError as e:
        raise _http_error(e)
    return ResyncResponse(backend=name, applied=applied)
