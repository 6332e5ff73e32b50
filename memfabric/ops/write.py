"""
Write fan-out coordinator.

Builds the canonical record (id, enriched metadata, integrity hash),
writes it to every registered backend concurrently under one deadline,
and commits it with the per-backend outcome vector to the unified index.
Quorum is one: a write is a success as soon as any backend accepted it.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Set

from ..core.schemas import RESERVED_METADATA, Record, StoreResult
from ..errors import AllBackendsFailed, EmptyRegistryError, InvalidRecordError
from ..index.unified import UnifiedIndex
from ..integrity.anchor import IntegrityAnchor
from ..persist.hashing import generate_record_id
from ..registry import BackendRegistry
from ..telemetry import get_logger, log_step, new_run_id
from .fanout import fan_out

logger = get_logger(__name__)

_SCALARS = (str, int, float, bool, type(None))


def normalize_content(content: Any) -> str:
    """Accept text or UTF-8 bytes; reject empty payloads."""
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidRecordError(f"content is not valid UTF-8: {e}") from e
    if not isinstance(content, str):
        raise InvalidRecordError(f"content must be str or bytes, got {type(content).__name__}")
    if not content.strip():
        raise InvalidRecordError("content must not be empty")
    return content


def validate_metadata(metadata: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Metadata values must be scalars or lists of scalars."""
    if metadata is None:
        return {}
    if not isinstance(metadata, Mapping):
        raise InvalidRecordError("metadata must be a mapping")
    clean: Dict[str, Any] = {}
    for key, value in metadata.items():
        if not isinstance(key, str) or not key:
            raise InvalidRecordError(f"metadata keys must be non-empty strings, got {key!r}")
        if isinstance(value, (list, tuple)):
            if not all(isinstance(v, _SCALARS) for v in value):
                raise InvalidRecordError(f"metadata[{key!r}] must contain only scalars")
            value = list(value)
        elif not isinstance(value, _SCALARS):
            raise InvalidRecordError(f"metadata[{key!r}] has unsupported type {type(value).__name__}")
        clean[key] = value
    return clean


class WriteCoordinator:
    """Fans a store request out to every backend and commits the result once."""

    def __init__(
        self,
        registry: BackendRegistry,
        index: UnifiedIndex,
        anchor: IntegrityAnchor,
        deadline_s: float = 5.0,
        default_namespace: str = "default",
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.index = index
        self.anchor = anchor
        self.deadline_s = deadline_s
        self.default_namespace = default_namespace
        self.clock = clock
        self._background: Set[asyncio.Task] = set()

    def build_record(
        self,
        content: Any,
        metadata: Optional[Mapping[str, Any]] = None,
        record_id: Optional[str] = None,
    ) -> Record:
        """
        Compute the canonical record for a store request.

        Re-storing under an existing id produces a strictly newer version.
        """
        text = normalize_content(content)
        meta = validate_metadata(metadata)

        namespace = str(meta.get("namespace") or self.default_namespace)
        ts = self.clock()
        if record_id is not None:
            current = self.index.get(record_id)
            if current is not None and current.timestamp >= ts:
                ts = current.timestamp + 1e-6
        else:
            record_id = generate_record_id(text, namespace, ts)

        enriched = {
            "artifact_type": "memory",
            "significance": "MEDIUM",
            **{k: v for k, v in meta.items() if k not in RESERVED_METADATA},
            "namespace": namespace,
            "timestamp": datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(),
            "record_id": record_id,
        }

        return Record(
            id=record_id,
            content=text,
            metadata=enriched,
            integrity_hash=self.anchor.compute_hash(text, namespace),
            timestamp=ts,
        )

    async def store(
        self,
        content: Any,
        metadata: Optional[Mapping[str, Any]] = None,
        record_id: Optional[str] = None,
    ) -> StoreResult:
        """
        Store content on every backend.

        Raises:
            InvalidRecordError: malformed content or metadata
            EmptyRegistryError: no backend registered
            AllBackendsFailed: no backend accepted the write
        """
        record = self.build_record(content, metadata, record_id)
        adapters = self.registry.adapters()
        if not adapters:
            raise EmptyRegistryError("no backends registered")

        run_id = new_run_id()
        started = time.perf_counter()
        payload = record.without_outcomes()
        results = await fan_out(
            {a.name: (lambda a=a: a.write(payload)) for a in adapters},
            self.deadline_s,
        )

        outcomes = []
        for name, result in results.items():
            ack = result.value if result.ok else None
            outcomes.append(result.to_outcome(ack.backend_record_id if ack is not None else None))
            if not result.ok:
                logger.warning(
                    "backend_write_failed",
                    backend=name,
                    record_id=record.id,
                    timed_out=result.timed_out,
                    error=result.error_text,
                )

        accepted = sum(1 for o in outcomes if o.success)
        log_step(run_id, "store", (time.perf_counter() - started) * 1000,
                 record_id=record.id, accepted=accepted, total=len(outcomes))

        if accepted == 0:
            raise AllBackendsFailed("store", outcomes)

        self.index.upsert(record, outcomes)
        logger.info("store_committed", record_id=record.id, accepted=accepted, total=len(outcomes))

        if self.anchor.can_anchor:
            self._spawn_anchor(record)

        return StoreResult(
            id=record.id,
            integrity_hash=record.integrity_hash,
            backends_accepted=accepted,
            backends_total=len(outcomes),
            timestamp=record.timestamp,
            outcomes=outcomes,
        )

    def _spawn_anchor(self, record: Record) -> None:
        task = asyncio.create_task(self._anchor(record), name=f"anchor:{record.id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _anchor(self, record: Record) -> None:
        receipt = await self.anchor.anchor(
            record.integrity_hash,
            {"record_id": record.id, "namespace": record.namespace},
        )
        if receipt.anchored:
            self.index.mark_anchored(record.id, record.integrity_hash, receipt.reference)

    def background_tasks(self) -> Set[asyncio.Task]:
        """Anchor publications still in flight."""
        return set(self._background)
