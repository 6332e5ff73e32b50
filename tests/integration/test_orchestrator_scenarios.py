"""
Integration tests driving the MemoryOrchestrator end to end: store,
fused search, reconciliation, anchoring, shutdown and index snapshots.
"""
import asyncio

import pytest

from memfabric import MemoryOrchestrator
from memfabric.backends.memory import InMemoryBackend
from memfabric.backends.sqlite import SqliteBackend
from memfabric.config.settings import BackendCfg, OrchestratorCfg, Paths, Settings
from memfabric.core.schemas import BackendDescriptor, SearchOptions
from memfabric.errors import AllBackendsFailed, AnchorFailure, InvalidRequestError, OrchestratorClosed
from memfabric.integrity.anchor import IntegrityAnchor, LedgerClient

# Mark all tests as async
pytestmark = pytest.mark.asyncio


class FlakyLedger(LedgerClient):
    """Fails the first `failures` publications, then succeeds."""

    def __init__(self, failures=0):
        self.failures = failures
        self.calls = 0

    async def publish(self, digest, metadata):
        self.calls += 1
        if self.calls <= self.failures:
            raise AnchorFailure("ledger unreachable")
        return f"tx-{self.calls}"


def _orchestrator(backends, interval_ms=30000, anchor=None, **cfg):
    settings = Settings(backends=[], orchestrator=OrchestratorCfg(**cfg))
    orch = MemoryOrchestrator(settings=settings, anchor=anchor)
    for b in backends:
        orch.register_backend(BackendDescriptor(name=b.name, priority=1, reconciliation_interval_ms=interval_ms), b)
    return orch


@pytest.fixture
def three_backends():
    return [InMemoryBackend(f"backend{i}") for i in (1, 2, 3)]


async def test_store_and_search_with_one_backend_offline(three_backends):
    """Backend 2 offline: store reports 2/3, search is served by backends 1 and 3."""
    three_backends[1].offline = True
    orch = _orchestrator(three_backends)

    result = await orch.store("evidence-42", {"namespace": "case-7", "kind": "timeline"})

    assert result.id.startswith("MEM_")
    assert result.backends_accepted == 2
    assert result.backends_total == 3

    response = await orch.search("evidence", namespace_filter="case-7")

    assert response.ids == [result.id]
    assert response.results[0].contributing_backends == ["backend1", "backend3"]
    assert response.failed_backends == ["backend2"]
    await orch.shutdown()


async def test_single_accepting_backend_meets_quorum(three_backends):
    three_backends[0].offline = True
    three_backends[2].offline = True
    orch = _orchestrator(three_backends)

    result = await orch.store("lone witness statement")
    response = await orch.search("witness")

    assert result.backends_accepted == 1
    assert response.ids == [result.id]
    assert response.results[0].contributing_backends == ["backend2"]
    await orch.shutdown()


async def test_zero_accepting_backends_is_a_hard_error(three_backends):
    for b in three_backends:
        b.offline = True
    orch = _orchestrator(three_backends)

    with pytest.raises(AllBackendsFailed):
        await orch.store("evidence-42")
    assert len(orch.index) == 0
    await orch.shutdown()


async def test_slow_backend_excluded_from_search(three_backends):
    orch = _orchestrator(three_backends, search_deadline_s=0.1)
    stored = await orch.store("evidence-42", {"namespace": "case-7"})
    three_backends[2].latency_s = 2.0

    response = await orch.search("evidence")

    assert response.ids == [stored.id]
    assert response.failed_backends == ["backend3"]
    assert response.results[0].contributing_backends == ["backend1", "backend2"]
    await orch.shutdown()


async def test_search_by_kind(three_backends):
    orch = _orchestrator(three_backends)
    timeline = await orch.store("door opened", {"artifact_type": "timeline"})
    await orch.store("door photo", {"artifact_type": "image"})
    report = await orch.store("door report", {"artifact_type": "report"})

    response = await orch.search_by_kind("door", ["timeline", "report"])

    assert sorted(response.ids) == sorted([timeline.id, report.id])
    await orch.shutdown()


async def test_search_options_and_keywords_are_exclusive(three_backends):
    orch = _orchestrator(three_backends)
    await orch.store("door opened", {"namespace": "case-7"})

    with pytest.raises(InvalidRequestError):
        await orch.search("door", SearchOptions(), limit=3)
    with pytest.raises(InvalidRequestError):
        await orch.search("door", SearchOptions(namespace_filter="case-7"), namespace_filter="case-8")

    response = await orch.search("door", SearchOptions(namespace_filter="case-7", limit=3))
    assert len(response.results) == 1
    await orch.shutdown()


async def test_reconciliation_repairs_missed_write(three_backends):
    """A record only backend1 holds reaches the others through its reconciliation loop."""
    three_backends[1].offline = True
    orch = _orchestrator(three_backends, interval_ms=50)
    await orch.start()

    result = await orch.store("evidence-42")
    assert result.id not in three_backends[1]

    three_backends[1].offline = False
    await asyncio.sleep(0.4)

    assert result.id in three_backends[1]
    assert orch.get_record(result.id).is_fully_replicated(orch.registry.names())
    await orch.shutdown()


async def test_sync_now_reports_propagation(three_backends, make_record):
    orch = _orchestrator(three_backends)
    await three_backends[0].write(make_record(record_id="R1"))

    report = await orch.sync_now("backend1")

    assert report.committed == 1
    assert report.propagated == {"backend2": 1, "backend3": 1}
    assert orch.get_record("R1") is not None
    await orch.shutdown()


async def test_failed_anchor_is_retried(three_backends):
    orch = _orchestrator(three_backends, anchor=IntegrityAnchor(ledger=FlakyLedger(failures=1)))

    result = await orch.store("evidence-42")
    await asyncio.gather(*orch.writer.background_tasks())

    assert not orch.get_record(result.id).anchored
    assert len(orch.anchor.pending()) == 1

    receipts = await orch.retry_anchors()

    assert [r.anchored for r in receipts] == [True]
    assert orch.get_record(result.id).anchored
    assert orch.get_record(result.id).anchor_ref == "tx-2"
    await orch.shutdown()


async def test_fuse_over_stored_records(three_backends):
    orch = _orchestrator(three_backends)
    a = await orch.store("car seen at 10:00", {"namespace": "case-7", "color": "red"})
    b = await orch.store("car seen at 10:05", {"namespace": "case-7", "color": "blue"})

    report = await orch.fuse([a.id, b.id])

    assert report.records_analyzed == 2
    assert [c.field for c in report.contradictions] == ["color"]
    assert report.admissibility_score == 0.0
    await orch.shutdown()


async def test_deregister_disconnects(three_backends):
    orch = _orchestrator(three_backends)

    await orch.deregister_backend("backend3")

    assert orch.registry.names() == ["backend1", "backend2"]
    assert three_backends[2].closed
    result = await orch.store("evidence-42")
    assert result.backends_total == 2

    with pytest.raises(KeyError):
        await orch.deregister_backend("backend3")
    await orch.shutdown()


async def test_shutdown_waits_for_inflight_and_refuses_new_work(three_backends):
    three_backends[0].latency_s = 0.2
    orch = _orchestrator(three_backends, interval_ms=50)
    await orch.start()

    pending_store = asyncio.create_task(orch.store("slow write"))
    await asyncio.sleep(0.05)
    await orch.shutdown(grace_deadline_s=2.0)

    result = await pending_store
    assert result.backends_accepted == 3
    assert orch.closed
    assert all(b.closed for b in three_backends)
    assert not orch.scheduler.running

    with pytest.raises(OrchestratorClosed):
        await orch.store("too late")
    with pytest.raises(OrchestratorClosed):
        await orch.search("too late")


async def test_snapshot_restores_index_on_restart(tmp_path):
    settings = Settings(
        backends=[
            BackendCfg(name="mem", kind="memory", priority=1),
            BackendCfg(name="disk", kind="sqlite", priority=2),
        ],
        paths=Paths(data_dir=str(tmp_path / "data"), snapshot_db=str(tmp_path / "index.db")),
    )

    orch = MemoryOrchestrator.from_settings(settings)
    async with orch:
        result = await orch.store("evidence-42", {"namespace": "case-7"})
        assert isinstance(orch.registry.get("disk"), SqliteBackend)

    restarted = MemoryOrchestrator.from_settings(settings)
    restored = restarted.get_record(result.id)

    assert restored is not None
    assert restored.integrity_hash == result.integrity_hash
    assert sorted(restored.accepted_by) == ["disk", "mem"]

    # The sqlite backend kept its data across the restart
    response = await restarted.search("evidence")
    assert response.ids == [result.id]
    assert response.results[0].contributing_backends == ["disk"]
    await restarted.shutdown()
