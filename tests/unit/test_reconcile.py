"""
Unit tests for memfabric/ops/reconcile.py

Tests delta pulls, checkpoint handling, propagation and the periodic loops.
"""
import asyncio

import pytest

from memfabric.ops.reconcile import ReconciliationScheduler

# Mark all tests as async
pytestmark = pytest.mark.asyncio


@pytest.fixture
def scheduler(registry, index):
    return ReconciliationScheduler(registry, index, call_timeout_s=0.5)


async def test_tick_commits_and_propagates(scheduler, backends, index, registry, make_record):
    record = make_record(record_id="R1")
    await backends[0].write(record)

    report = await scheduler.tick("backend1")

    assert report.ok
    assert report.pulled == 1
    assert report.committed == 1
    assert report.propagated == {"backend2": 1, "backend3": 1}
    assert "R1" in backends[1] and "R1" in backends[2]
    assert sorted(index.get("R1").accepted_by) == ["backend1", "backend2", "backend3"]
    assert registry.descriptor("backend1").last_sync_timestamp > 0


async def test_failed_pull_keeps_checkpoint(scheduler, backends, registry, make_record):
    await backends[0].write(make_record(record_id="R1"))
    backends[0].offline = True

    report = await scheduler.tick("backend1")

    assert not report.ok
    assert "offline" in report.error
    assert registry.descriptor("backend1").last_sync_timestamp == 0.0

    backends[0].offline = False
    report = await scheduler.tick("backend1")
    assert report.ok and report.pulled == 1


async def test_second_tick_pulls_nothing_new(scheduler, backends, make_record):
    await backends[0].write(make_record(record_id="R1"))
    await scheduler.tick("backend1")

    report = await scheduler.tick("backend1")

    assert report.ok
    assert report.pulled == 0


async def test_peer_failure_does_not_roll_back(scheduler, backends, index, make_record):
    await backends[0].write(make_record(record_id="R1"))
    backends[2].offline = True

    report = await scheduler.tick("backend1")

    assert report.failed_peers == ["backend3"]
    assert index.get("R1") is not None
    assert "R1" not in backends[2]

    # The peer catches up through another backend's tick
    backends[2].offline = False
    await scheduler.tick("backend2")
    assert "R1" in backends[2]


async def test_stale_delta_does_not_regress_index(scheduler, backends, index, make_record):
    index.upsert(make_record(record_id="R1", content="new", timestamp=2.0))
    await backends[0].write(make_record(record_id="R1", content="old", timestamp=1.0))

    report = await scheduler.tick("backend1")

    assert report.pulled == 1
    assert report.committed == 0
    assert index.get("R1").content == "new"


async def test_backends_converge(scheduler, backends, make_record):
    await backends[0].write(make_record(record_id="R1", content="from one"))
    await backends[1].write(make_record(record_id="R2", content="from two"))
    await backends[2].write(make_record(record_id="R2", content="newer two", timestamp=2000.0))

    for _ in range(2):
        for backend in backends:
            await scheduler.tick(backend.name)

    for backend in backends:
        assert backend.get("R1").content == "from one"
        assert backend.get("R2").content == "newer two"


async def test_loops_run_until_stopped(scheduler, backends, make_record):
    await backends[0].write(make_record(record_id="R1"))

    scheduler.start()
    assert scheduler.running
    await asyncio.sleep(0.3)
    await scheduler.stop()

    assert not scheduler.running
    assert "R1" in backends[1]


async def test_full_resync_pushes_index(scheduler, backends, index, make_record):
    index.upsert(make_record(record_id="R1"))
    index.upsert(make_record(record_id="R2"))

    applied = await scheduler.full_resync("backend3")

    assert applied == 2
    assert "R1" in backends[2] and "R2" in backends[2]
    assert index.get("R1").accepted_by == ["backend3"]


async def test_unknown_backend(scheduler):
    with pytest.raises(KeyError):
        await scheduler.tick("nope")
    with pytest.raises(KeyError):
        await scheduler.full_resync("nope")


async def test_clock_skew_margin_moves_checkpoint_back(registry, index, backends, make_record):
    scheduler = ReconciliationScheduler(registry, index, call_timeout_s=0.5, clock_skew_s=5.0,
                                        clock=lambda: 1000.0)
    await backends[0].write(make_record(record_id="R1"))

    first = await scheduler.tick("backend1")
    assert first.committed == 1
    assert registry.descriptor("backend1").last_sync_timestamp == 995.0

    # Rows inside the margin are pulled again but commit nothing new
    second = await scheduler.tick("backend1")
    assert second.ok
    assert second.pulled == 1
    assert second.committed == 0
    assert len(index) == 1


async def test_checkpoint_never_moves_backwards(registry, index, backends):
    scheduler = ReconciliationScheduler(registry, index, call_timeout_s=0.5, clock_skew_s=5.0,
                                        clock=lambda: 1000.0)
    registry.descriptor("backend1").last_sync_timestamp = 2000.0

    report = await scheduler.tick("backend1")

    assert report.ok
    assert registry.descriptor("backend1").last_sync_timestamp == 2000.0
