"""
Memory orchestrator: the boundary collaborators talk to.

Wires the registry, unified index, write coordinator, fusion engine,
correlator, integrity anchor and reconciliation scheduler together and
exposes store / search / fuse / register_backend / deregister_backend /
shutdown.
"""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from .backends import BackendAdapter, build_backend
from .config.settings import Settings
from .core.schemas import (
    BackendDescriptor,
    FusionReport,
    Record,
    SearchOptions,
    SearchResponse,
    StoreResult,
)
from .errors import InvalidRequestError, OrchestratorClosed
from .index.snapshot import TABLE as SNAPSHOT_TABLE, restore_index, snapshot_index
from .index.unified import UnifiedIndex
from .integrity.anchor import AnchorReceipt, HttpLedgerClient, IntegrityAnchor
from .ops.reconcile import ReconcileReport, ReconciliationScheduler
from .ops.write import WriteCoordinator
from .persist.sqlite_store import KVStore
from .registry import BackendRegistry
from .search.correlate import EvidenceCorrelator, InconsistencyPolicy
from .search.fusion import SearchFusionEngine
from .telemetry import get_logger

logger = get_logger(__name__)


class MemoryOrchestrator:
    """
    Coordinates several heterogeneous memory backends as one store.

    Usage:
        >>> orch = MemoryOrchestrator.from_settings(Settings())
        >>> await orch.start()
        >>> result = await orch.store("evidence-42", {"namespace": "case-7", "kind": "timeline"})
        >>> hits = await orch.search("evidence", namespace_filter="case-7")
        >>> await orch.shutdown()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[BackendRegistry] = None,
        index: Optional[UnifiedIndex] = None,
        anchor: Optional[IntegrityAnchor] = None,
        snapshot_store: Optional[KVStore] = None,
        clock=time.time,
    ):
        self.settings = settings or Settings(backends=[])
        cfg = self.settings.orchestrator

        self.registry = registry or BackendRegistry()
        self.index = index or UnifiedIndex()
        self.anchor = anchor or IntegrityAnchor(
            domain_tag=self.settings.anchor.domain_tag,
            enabled=self.settings.anchor.enabled,
        )
        self.snapshot_store = snapshot_store

        self.writer = WriteCoordinator(
            self.registry,
            self.index,
            self.anchor,
            deadline_s=cfg.write_deadline_s,
            default_namespace=cfg.namespace,
            clock=clock,
        )
        self.engine = SearchFusionEngine(
            self.registry,
            self.index,
            deadline_s=cfg.search_deadline_s,
            default_limit=cfg.default_limit,
            per_backend_limit_factor=cfg.per_backend_limit_factor,
        )
        self.correlator = EvidenceCorrelator(self.index, self.anchor)
        self.scheduler = ReconciliationScheduler(
            self.registry,
            self.index,
            call_timeout_s=cfg.reconcile_call_timeout_s,
            clock_skew_s=cfg.reconcile_clock_skew_s,
            clock=clock,
        )

        self._inflight: Set[asyncio.Task] = set()
        self._snapshot_task: Optional[asyncio.Task] = None
        self._closing = False
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "MemoryOrchestrator":
        """Build backends, ledger client and snapshot store from configuration."""
        ledger = None
        if settings.anchor.ledger_url:
            ledger = HttpLedgerClient(settings.anchor.ledger_url, timeout_s=settings.anchor.timeout_s)
        anchor = IntegrityAnchor(
            domain_tag=settings.anchor.domain_tag,
            ledger=ledger,
            enabled=settings.anchor.enabled,
        )

        snapshot_store = None
        index = UnifiedIndex()
        if settings.paths.snapshot_db:
            snapshot_store = KVStore(Path(settings.paths.snapshot_db), tables=(SNAPSHOT_TABLE,))
            restore_index(snapshot_store, index)

        orch = cls(settings=settings, index=index, anchor=anchor, snapshot_store=snapshot_store)
        for backend_cfg in settings.backends:
            descriptor = BackendDescriptor(
                name=backend_cfg.name,
                role=backend_cfg.role,
                priority=backend_cfg.priority,
                reconciliation_interval_ms=backend_cfg.reconciliation_interval_ms,
            )
            orch.register_backend(descriptor, build_backend(backend_cfg, settings.paths.data_dir))
        return orch

    # Lifecycle

    async def start(self) -> None:
        """Start reconciliation loops (and periodic snapshots if configured)."""
        self._check_open()
        self.scheduler.start()
        interval = self.settings.orchestrator.snapshot_interval_s
        if self.snapshot_store is not None and interval > 0:
            self._snapshot_task = asyncio.create_task(self._snapshot_loop(interval), name="index-snapshot")
        logger.info("orchestrator_started", backends=self.registry.names())

    async def __aenter__(self) -> "MemoryOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closing:
            raise OrchestratorClosed("orchestrator is shutting down")

    def _track(self) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)

    def _untrack(self) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._inflight.discard(task)

    async def shutdown(self, grace_deadline_s: Optional[float] = None) -> None:
        """
        Coordinated teardown:
        1. refuse new work and stop every reconciliation loop
        2. wait for in-flight store/search calls and anchor publications
           up to the grace deadline
        3. snapshot the index if a snapshot store is configured
        4. disconnect every backend adapter
        """
        if self._closing:
            return
        self._closing = True
        grace = self.settings.orchestrator.shutdown_grace_s if grace_deadline_s is None else grace_deadline_s

        await self.scheduler.stop()
        if self._snapshot_task is not None:
            self._snapshot_task.cancel()
            await asyncio.gather(self._snapshot_task, return_exceptions=True)

        current = asyncio.current_task()
        waiting = {t for t in self._inflight | self.writer.background_tasks() if t is not current}
        if waiting:
            _, pending = await asyncio.wait(waiting, timeout=grace)
            if pending:
                logger.warning("shutdown_grace_exceeded", abandoned=len(pending))
                for task in pending:
                    task.cancel()

        if self.snapshot_store is not None:
            self.snapshot()
            self.snapshot_store.close()

        adapters = self.registry.adapters()
        results = await asyncio.gather(
            *(asyncio.wait_for(a.disconnect(), timeout=max(grace, 1.0)) for a in adapters),
            return_exceptions=True,
        )
        for adapter, result in zip(adapters, results):
            if isinstance(result, BaseException):
                logger.warning("disconnect_failed", backend=adapter.name, error=repr(result))

        await self.anchor.close()
        self._closed = True
        logger.info("shutdown_complete", backends=len(adapters))

    # Configuration surface

    def register_backend(self, descriptor: BackendDescriptor, adapter: BackendAdapter) -> None:
        """Add a backend; it joins reconciliation immediately if the scheduler runs."""
        self._check_open()
        self.registry.register(descriptor, adapter)
        if self.scheduler.running:
            self.scheduler.add(descriptor.name)
        logger.info("backend_registered", backend=descriptor.name, role=descriptor.role,
                    priority=descriptor.priority)

    async def deregister_backend(self, name: str) -> None:
        """
        Stop reconciling a backend, drop it and release its connection.

        Raises:
            KeyError: unknown backend
        """
        if name not in self.registry:
            raise KeyError(name)
        await self.scheduler.remove(name)
        adapter = self.registry.deregister(name)
        await adapter.disconnect()
        logger.info("backend_deregistered", backend=name)

    def backends(self) -> List[BackendDescriptor]:
        return self.registry.descriptors()

    # Boundary operations

    async def store(
        self,
        content: str | bytes,
        metadata: Optional[Mapping[str, Any]] = None,
        record_id: Optional[str] = None,
    ) -> StoreResult:
        """Store content on every backend (quorum = 1). See WriteCoordinator.store."""
        self._check_open()
        self._track()
        try:
            return await self.writer.store(content, metadata, record_id=record_id)
        finally:
            self._untrack()

    async def search(
        self,
        query: str | Sequence[float],
        options: Optional[SearchOptions] = None,
        *,
        namespace_filter: Optional[str] = None,
        limit: Optional[int] = None,
        required_metadata: Optional[Dict[str, Any]] = None,
    ) -> SearchResponse:
        """
        Fan-out search with fusion. Keyword options build a SearchOptions when none is given.

        Raises:
            InvalidRequestError: both `options` and keyword options given
        """
        self._check_open()
        if options is not None:
            if namespace_filter is not None or limit is not None or required_metadata is not None:
                raise InvalidRequestError("pass either options or keyword options, not both")
        else:
            options = SearchOptions(
                namespace_filter=namespace_filter,
                limit=limit,
                required_metadata=required_metadata or {},
            )
        self._track()
        try:
            return await self.engine.search(query, options)
        finally:
            self._untrack()

    async def search_by_kind(
        self,
        query: str,
        artifact_types: Iterable[str],
        namespace: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> SearchResponse:
        """Search restricted to records whose artifact_type is one of artifact_types."""
        return await self.search(
            query,
            namespace_filter=namespace,
            limit=limit,
            required_metadata={"artifact_type": list(artifact_types)},
        )

    async def fuse(self, record_ids: Iterable[str], fusion_kind: str = "contradiction_analysis") -> FusionReport:
        """Correlate records for pairwise inconsistencies. See EvidenceCorrelator.fuse."""
        self._check_open()
        return self.correlator.fuse(record_ids, fusion_kind)

    def register_fusion_policy(self, fusion_kind: str, policy: InconsistencyPolicy) -> None:
        self.correlator.register_policy(fusion_kind, policy)

    def get_record(self, record_id: str) -> Optional[Record]:
        return self.index.get(record_id)

    # Collaborator-triggered maintenance

    async def sync_now(self, name: str) -> ReconcileReport:
        return await self.scheduler.sync_now(name)

    async def full_resync(self, name: str) -> int:
        return await self.scheduler.full_resync(name)

    async def retry_anchors(self) -> List[AnchorReceipt]:
        """Retry failed anchor publications and record the successes in the index."""
        receipts = await self.anchor.retry_pending()
        for receipt in receipts:
            if receipt.anchored and receipt.record_id:
                self.index.mark_anchored(receipt.record_id, receipt.digest, receipt.reference)
        return receipts

    def snapshot_stats(self) -> Optional[Dict[str, Any]]:
        """Row count and change times of the snapshot table (None if no snapshot store)."""
        if self.snapshot_store is None or self.snapshot_store.closed:
            return None
        return self.snapshot_store.stats(SNAPSHOT_TABLE)

    def snapshot(self) -> int:
        """Write the index to the snapshot store. Returns records written (0 if none configured)."""
        if self.snapshot_store is None or self.snapshot_store.closed:
            return 0
        count = snapshot_index(self.index, self.snapshot_store)
        logger.info("index_snapshot", records=count)
        return count

    async def _snapshot_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                await asyncio.to_thread(self.snapshot)
            except Exception:
                logger.exception("index_snapshot_failed")
