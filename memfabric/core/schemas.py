"""
Orchestration data models.

Defines the canonical Record, per-backend outcomes, transient search hits,
backend descriptors and the result objects returned to callers.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
import time


# Metadata keys written by the orchestrator itself
RESERVED_METADATA = ("namespace", "timestamp", "record_id")


class BackendOutcome(BaseModel):
    """Result of one backend call for one record."""

    backend: str = Field(..., description="Backend name")
    success: bool = Field(..., description="Whether the backend accepted the call")
    backend_record_id: Optional[str] = Field(None, description="Backend-native id, if any")
    error: Optional[str] = Field(None, description="Error text for failed calls")
    elapsed_ms: float = Field(0.0, description="Wall time spent waiting on the backend")


class Record(BaseModel):
    """
    The canonical unit of memory.

    A record is durable once at least one backend accepted it and fully
    replicated once every registered backend did. Records are replaced
    as a whole, never edited in place.
    """

    id: str = Field(..., description="Opaque id derived from content, namespace and creation time")
    content: str = Field(..., description="Opaque payload")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Namespace, artifact type, caller fields")
    integrity_hash: str = Field(..., description="Digest over content + namespace + domain tag")
    timestamp: float = Field(default_factory=time.time, description="Record version time (unix seconds)")
    backend_outcomes: List[BackendOutcome] = Field(default_factory=list, description="Per-backend write outcomes")
    anchored: bool = Field(False, description="Whether the integrity hash was published to a ledger")
    anchor_ref: Optional[str] = Field(None, description="External ledger reference")

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "MEM_3F1A9C0D7E2B4A61",
                "content": "evidence-42",
                "metadata": {
                    "namespace": "case-7",
                    "artifact_type": "timeline",
                    "significance": "MEDIUM",
                    "timestamp": "2024-05-01T10:00:00+00:00",
                    "record_id": "MEM_3F1A9C0D7E2B4A61",
                },
                "integrity_hash": "9b71d224bd62f378...",
                "timestamp": 1714557600.0,
                "backend_outcomes": [
                    {"backend": "primary", "success": True, "backend_record_id": "MEM_3F1A9C0D7E2B4A61"}
                ],
                "anchored": False,
            }
        }

    @property
    def namespace(self) -> str:
        return str(self.metadata.get("namespace", ""))

    @property
    def accepted_by(self) -> List[str]:
        """Names of backends that accepted this version."""
        return [o.backend for o in self.backend_outcomes if o.success]

    def is_durable(self) -> bool:
        return any(o.success for o in self.backend_outcomes)

    def is_fully_replicated(self, backend_names: List[str]) -> bool:
        accepted = set(self.accepted_by)
        return all(name in accepted for name in backend_names)

    def without_outcomes(self) -> "Record":
        """Copy as handed to backends: outcomes are orchestrator bookkeeping."""
        return self.model_copy(update={"backend_outcomes": []})

    def to_storage_dict(self) -> Dict[str, Any]:
        """Convert to dict for backend storage (outcomes are not persisted there)."""
        data = self.model_dump()
        data.pop("backend_outcomes", None)
        return data

    @classmethod
    def from_storage_dict(cls, data: Dict[str, Any]) -> "Record":
        return cls(**data)

    def snippet(self, max_chars: int = 100) -> str:
        if len(self.content) <= max_chars:
            return self.content
        return self.content[:max_chars-3] + "..."


class SearchHit(BaseModel):
    """A single backend-native hit. Transient; scores are not comparable across backends."""

    record_id: str
    score: float
    source_backend: str


class BackendDescriptor(BaseModel):
    """Configuration of one backend; only last_sync_timestamp changes after startup."""

    name: str = Field(..., description="Unique backend name")
    role: str = Field("primary", description="primary / backup / vector_search / cognitive")
    priority: int = Field(1, description="Lower value is more authoritative")
    reconciliation_interval_ms: int = Field(30000, description="Reconciliation period", gt=0)
    last_sync_timestamp: float = Field(0.0, description="Checkpoint of the last successful pull")

    @property
    def reconciliation_interval_s(self) -> float:
        return self.reconciliation_interval_ms / 1000.0


class SearchOptions(BaseModel):
    """Options accepted by a fan-out search."""

    namespace_filter: Optional[str] = Field(None, description="Only records in this namespace")
    limit: Optional[int] = Field(None, description="Maximum results", ge=1)
    required_metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Metadata that must match; a list value means 'any of'",
    )


class StoreResult(BaseModel):
    """Outcome of a store request. Partial success is reported, not raised."""

    id: str
    integrity_hash: str
    backends_accepted: int
    backends_total: int
    timestamp: float
    outcomes: List[BackendOutcome] = Field(default_factory=list)

    @property
    def fully_replicated(self) -> bool:
        return self.backends_accepted == self.backends_total

    def met_quorum(self, n: int) -> bool:
        """Whether at least n backends accepted the write."""
        return self.backends_accepted >= n


class SearchResult(BaseModel):
    """One fused, deduplicated search result resolved against the unified index."""

    id: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    score: float
    contributing_backends: List[str] = Field(default_factory=list)
    integrity_hash: str = ""


class SearchResponse(BaseModel):
    """Fused results plus which backends answered in time."""

    results: List[SearchResult] = Field(default_factory=list)
    contributing_backends: List[str] = Field(default_factory=list)
    failed_backends: List[str] = Field(default_factory=list)
    unresolved_ids: List[str] = Field(default_factory=list, description="Hits with no unified index entry")
    elapsed_ms: float = 0.0

    @property
    def ids(self) -> List[str]:
        return [r.id for r in self.results]


class Contradiction(BaseModel):
    """A pairwise inconsistency found between two records."""

    record_a: str
    record_b: str
    field: str
    value_a: Any = None
    value_b: Any = None
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class CriticalFinding(BaseModel):
    record_id: str
    significance: str
    summary: str


class FusionReport(BaseModel):
    """Result of correlating a set of records for inconsistencies."""

    fusion_id: str
    fusion_kind: str
    records_analyzed: int
    critical_findings: List[CriticalFinding] = Field(default_factory=list)
    contradictions: List[Contradiction] = Field(default_factory=list)
    admissibility_score: float = Field(0.0, ge=0.0, le=1.0)
    forensic_hash: str = ""
    missing_ids: List[str] = Field(default_factory=list)
    integrity_failures: List[str] = Field(default_factory=list)
