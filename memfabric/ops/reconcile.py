"""
Reconciliation scheduler.

Runs one independent periodic task per backend. Each tick pulls the
backend's changes since its checkpoint, commits them to the unified index
and pushes them to every other backend. The checkpoint only advances after
a successful pull, so a failed pull is retried on the next tick.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..core.schemas import BackendOutcome, Record
from ..errors import BackendUnavailable
from ..index.unified import UnifiedIndex
from ..registry import BackendRegistry
from ..telemetry import get_logger, log_step, new_run_id
from .fanout import fan_out

logger = get_logger(__name__)


@dataclass
class ReconcileReport:
    """What one tick did for one backend."""

    backend: str
    pulled: int = 0
    committed: int = 0
    propagated: Dict[str, int] = field(default_factory=dict)
    failed_peers: List[str] = field(default_factory=list)
    ok: bool = True
    error: Optional[str] = None


class ReconciliationScheduler:
    """
    Owns the per-backend reconciliation tasks.

    Each task can be started, stopped and cancelled on its own; nothing
    else in the process runs background sync.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        index: UnifiedIndex,
        call_timeout_s: float = 10.0,
        clock_skew_s: float = 0.0,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.index = index
        self.call_timeout_s = call_timeout_s
        self.clock_skew_s = clock_skew_s
        self.clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start one loop per registered backend."""
        self._running = True
        for name in self.registry.names():
            self.add(name)

    def add(self, name: str) -> None:
        """Start the loop for a backend registered after start()."""
        if not self._running or name in self._tasks:
            return
        self._tasks[name] = asyncio.create_task(self._loop(name), name=f"reconcile:{name}")

    async def remove(self, name: str) -> None:
        """Stop and await the loop of one backend."""
        task = self._tasks.pop(name, None)
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def stop(self) -> None:
        """Cancel every loop and wait for them to finish."""
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _loop(self, name: str) -> None:
        while True:
            descriptor = self.registry.descriptor(name)
            if descriptor is None:
                return
            await asyncio.sleep(descriptor.reconciliation_interval_s)
            try:
                await self.tick(name)
            except Exception:
                # A broken tick must not kill the loop; the next tick retries
                logger.exception("reconcile_tick_crashed", backend=name)

    async def tick(self, name: str) -> ReconcileReport:
        """
        One reconciliation firing for backend `name`.

        Raises:
            KeyError: unknown backend
        """
        descriptor = self.registry.descriptor(name)
        adapter = self.registry.get(name)
        if descriptor is None or adapter is None:
            raise KeyError(name)

        report = ReconcileReport(backend=name)
        run_id = new_run_id()
        started = time.perf_counter()
        pull_started_at = self.clock()

        try:
            records = await asyncio.wait_for(
                adapter.pull_delta(descriptor.last_sync_timestamp), self.call_timeout_s
            )
        except asyncio.TimeoutError:
            report.ok = False
            report.error = f"pull_delta timed out after {self.call_timeout_s}s"
        except Exception as e:
            report.ok = False
            report.error = f"{type(e).__name__}: {e}"

        if not report.ok:
            logger.warning("reconcile_pull_failed", backend=name, error=report.error)
            return report

        report.pulled = len(records)
        if records:
            logger.info("reconcile_pulled", backend=name, count=len(records))
            for record in records:
                if self.index.upsert(record, [BackendOutcome(backend=name, success=True, backend_record_id=record.id)]):
                    report.committed += 1
            await self._propagate(name, records, report)

        # Scheduler clock, compared by the backend against its own change times
        descriptor.last_sync_timestamp = max(
            descriptor.last_sync_timestamp, pull_started_at - self.clock_skew_s
        )
        log_step(run_id, "reconcile", (time.perf_counter() - started) * 1000,
                 backend=name, pulled=report.pulled, committed=report.committed)
        return report

    async def _propagate(self, source: str, records: List[Record], report: ReconcileReport) -> None:
        peers = self.registry.peers_of(source)
        payload = [r.without_outcomes() for r in records]
        results = await fan_out(
            {p.name: (lambda p=p: p.bulk_apply(payload)) for p in peers},
            self.call_timeout_s,
        )
        for peer, result in results.items():
            if not result.ok:
                # No rollback of the index commit; the peer catches up later
                report.failed_peers.append(peer)
                logger.warning("propagation_failed", source=source, peer=peer, error=result.error_text)
                continue
            report.propagated[peer] = int(result.value or 0)
            outcome = [BackendOutcome(backend=peer, success=True, backend_record_id=None)]
            for record in records:
                self.index.record_outcomes(record.id, record.timestamp, outcome)

    async def full_resync(self, name: str) -> int:
        """
        Push every unified-index record to one backend.

        Returns:
            Number of records the backend applied

        Raises:
            KeyError: unknown backend
            BackendUnavailable: the push failed or timed out
        """
        adapter = self.registry.get(name)
        if adapter is None:
            raise KeyError(name)
        records = self.index.scan()
        if not records:
            return 0
        try:
            applied = await asyncio.wait_for(
                adapter.bulk_apply([r.without_outcomes() for r in records]), self.call_timeout_s
            )
        except asyncio.TimeoutError as e:
            raise BackendUnavailable(name, "full resync timed out") from e
        outcome = [BackendOutcome(backend=name, success=True)]
        for record in records:
            self.index.record_outcomes(record.id, record.timestamp, outcome)
        logger.info("full_resync", backend=name, records=len(records), applied=applied)
        return applied

    async def sync_now(self, name: str) -> ReconcileReport:
        """Run a tick immediately, outside the schedule."""
        return await self.tick(name)
