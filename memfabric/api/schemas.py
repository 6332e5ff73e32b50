"""
Pydantic schemas for FastAPI endpoints.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class StoreRequest(BaseModel):
    """Request model for /store endpoint."""

    content: str = Field(..., description="Payload to store", min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Namespace, artifact_type, caller fields")
    record_id: Optional[str] = Field(default=None, description="Re-store under an existing id (full replace)")

    class Config:
        json_schema_extra = {
            "example": {
                "content": "evidence-42",
                "metadata": {"namespace": "case-7", "artifact_type": "timeline"},
            }
        }


class SearchRequest(BaseModel):
    """Request model for /search endpoint."""

    query: str = Field(..., description="Query text", min_length=1)
    namespace_filter: Optional[str] = Field(default=None, description="Only this namespace")
    limit: Optional[int] = Field(default=None, description="Maximum results", ge=1, le=1000)
    required_metadata: Dict[str, Any] = Field(default_factory=dict, description="Metadata that must match")

    class Config:
        json_schema_extra = {
            "example": {
                "query": "evidence",
                "namespace_filter": "case-7",
                "limit": 10,
            }
        }


class FuseRequest(BaseModel):
    """Request model for /fuse endpoint."""

    record_ids: List[str] = Field(..., description="Records to correlate", min_length=1)
    fusion_kind: str = Field(default="contradiction_analysis", description="Inconsistency policy to apply")


class BackendInfo(BaseModel):
    """One registered backend."""

    name: str
    role: str
    priority: int
    reconciliation_interval_ms: int
    last_sync_timestamp: float


class BackendListResponse(BaseModel):
    """Response model for /backends endpoint."""

    backends: List[BackendInfo] = Field(default_factory=list)


class ResyncResponse(BaseModel):
    """Response model for /backends/{name}/resync endpoint."""

    backend: str
    applied: int


class HealthResponse(BaseModel):
    """Response model for /health endpoint."""

    status: str = Field(..., description="Service status")
    backends: List[str] = Field(default_factory=list, description="Registered backend names")
    records: int = Field(default=0, description="Records in the unified index")
    pending_anchors: int = Field(default=0, description="Anchor publications awaiting retry")
    snapshot_records: Optional[int] = Field(default=None, description="Records in the last index snapshot")
    last_snapshot_ts: Optional[float] = Field(default=None, description="Time of the last index snapshot")
