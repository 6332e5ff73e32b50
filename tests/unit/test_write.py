"""
Unit tests for memfabric/ops/write.py

Tests write fan-out, quorum, partial failure and index commit.
"""
import asyncio

import pytest

from memfabric.backends.memory import InMemoryBackend
from memfabric.core.schemas import BackendDescriptor
from memfabric.errors import AllBackendsFailed, EmptyRegistryError, InvalidRecordError
from memfabric.integrity.anchor import IntegrityAnchor, LedgerClient
from memfabric.ops.write import WriteCoordinator, normalize_content, validate_metadata
from memfabric.registry import BackendRegistry


class RecordingLedger(LedgerClient):
    def __init__(self):
        self.published = []

    async def publish(self, digest, metadata):
        self.published.append((digest, metadata))
        return f"ledger://{len(self.published)}"


@pytest.fixture
def coordinator(registry, index, anchor, clock):
    return WriteCoordinator(registry, index, anchor, deadline_s=0.5, clock=clock)


@pytest.mark.asyncio
async def test_store_reaches_every_backend(coordinator, backends, index):
    result = await coordinator.store("evidence-42", {"namespace": "case-7"})

    assert result.backends_accepted == 3
    assert result.backends_total == 3
    assert result.fully_replicated
    assert all(result.id in b for b in backends)

    committed = index.get(result.id)
    assert committed.integrity_hash == result.integrity_hash
    assert sorted(committed.accepted_by) == ["backend1", "backend2", "backend3"]


@pytest.mark.asyncio
async def test_partial_failure_is_reported_not_raised(coordinator, backends, index):
    backends[1].offline = True

    result = await coordinator.store("evidence-42", {"namespace": "case-7"})

    assert result.backends_accepted == 2
    assert result.met_quorum(1)
    assert not result.fully_replicated
    failed = [o for o in result.outcomes if not o.success]
    assert [o.backend for o in failed] == ["backend2"]
    assert "offline" in failed[0].error
    assert index.get(result.id).is_durable()


@pytest.mark.asyncio
async def test_slow_backend_is_abandoned_at_deadline(index, anchor, clock):
    registry = BackendRegistry()
    for backend in (InMemoryBackend("fast"), InMemoryBackend("slow", latency_s=5.0)):
        registry.register(BackendDescriptor(name=backend.name), backend)
    coordinator = WriteCoordinator(registry, index, anchor, deadline_s=0.05, clock=clock)

    loop = asyncio.get_running_loop()
    started = loop.time()
    result = await coordinator.store("evidence-42")

    assert loop.time() - started < 1.0
    assert result.backends_accepted == 1
    slow = next(o for o in result.outcomes if o.backend == "slow")
    assert not slow.success


@pytest.mark.asyncio
async def test_total_failure_raises_and_commits_nothing(coordinator, backends, index):
    for backend in backends:
        backend.offline = True

    with pytest.raises(AllBackendsFailed) as exc_info:
        await coordinator.store("evidence-42")

    assert len(exc_info.value.outcomes) == 3
    assert len(index) == 0


@pytest.mark.asyncio
async def test_empty_registry(index, anchor):
    coordinator = WriteCoordinator(BackendRegistry(), index, anchor)

    with pytest.raises(EmptyRegistryError):
        await coordinator.store("evidence-42")


@pytest.mark.asyncio
async def test_invalid_content_rejected_before_fan_out(coordinator, backends):
    with pytest.raises(InvalidRecordError):
        await coordinator.store("   ")

    assert all(len(b) == 0 for b in backends)


def test_metadata_enrichment(coordinator, clock):
    record = coordinator.build_record(
        "evidence-42",
        {"namespace": "case-7", "kind": "timeline", "record_id": "forged", "significance": "CRITICAL"},
    )

    assert record.id.startswith("MEM_")
    assert record.metadata["record_id"] == record.id
    assert record.metadata["namespace"] == "case-7"
    assert record.metadata["artifact_type"] == "memory"
    assert record.metadata["significance"] == "CRITICAL"
    assert record.metadata["kind"] == "timeline"
    assert record.metadata["timestamp"].startswith("2023-11-14T")
    assert record.timestamp == clock.now


def test_default_namespace(coordinator):
    record = coordinator.build_record("evidence-42")
    assert record.namespace == "default"


@pytest.mark.asyncio
async def test_restore_same_id_produces_newer_version(coordinator, index):
    first = await coordinator.store("version one", {"namespace": "case-7"})
    # Clock has not moved: the replacement must still be strictly newer
    second = await coordinator.store("version two", {"namespace": "case-7"}, record_id=first.id)

    assert second.id == first.id
    assert second.timestamp > first.timestamp
    assert index.get(first.id).content == "version two"


@pytest.mark.asyncio
async def test_anchor_runs_in_background(registry, index, clock):
    ledger = RecordingLedger()
    anchor = IntegrityAnchor(ledger=ledger)
    coordinator = WriteCoordinator(registry, index, anchor, clock=clock)

    result = await coordinator.store("evidence-42", {"namespace": "case-7"})
    await asyncio.gather(*coordinator.background_tasks())

    assert ledger.published[0][0] == result.integrity_hash
    assert ledger.published[0][1]["record_id"] == result.id
    stored = index.get(result.id)
    assert stored.anchored
    assert stored.anchor_ref == "ledger://1"


def test_normalize_content():
    assert normalize_content(b"caf\xc3\xa9") == "café"
    with pytest.raises(InvalidRecordError):
        normalize_content(b"\xff\xfe")
    with pytest.raises(InvalidRecordError):
        normalize_content(42)


def test_validate_metadata():
    assert validate_metadata({"tags": ("a", "b"), "n": 1}) == {"tags": ["a", "b"], "n": 1}
    with pytest.raises(InvalidRecordError):
        validate_metadata({"nested": {"a": 1}})
    with pytest.raises(InvalidRecordError):
        validate_metadata({"": "x"})
