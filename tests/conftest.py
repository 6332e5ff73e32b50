"""Test configuration and fixtures."""

from typing import Any, Dict, Optional

import pytest

from memfabric.core.schemas import Record
from memfabric.persist.hashing import compute_integrity_hash


class FakeClock:
    """Manually advanced clock for timestamp-sensitive tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 1.0) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_record():
    """Factory for records with a correct integrity hash."""

    def _make(
        record_id: str = "MEM_TEST000000000001",
        content: str = "evidence-42",
        namespace: str = "case-7",
        timestamp: float = 1000.0,
        metadata: Optional[Dict[str, Any]] = None,
        outcomes: Optional[list] = None,
    ) -> Record:
        meta = {"namespace": namespace, "artifact_type": "memory", "significance": "MEDIUM"}
        meta.update(metadata or {})
        return Record(
            id=record_id,
            content=content,
            metadata=meta,
            integrity_hash=compute_integrity_hash(content, namespace),
            timestamp=timestamp,
            backend_outcomes=outcomes or [],
        )

    return _make
