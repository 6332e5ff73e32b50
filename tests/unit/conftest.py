"""
Shared fixtures for orchestration unit tests.
"""
import pytest

from memfabric.backends.memory import InMemoryBackend
from memfabric.core.schemas import BackendDescriptor
from memfabric.index.unified import UnifiedIndex
from memfabric.integrity.anchor import IntegrityAnchor
from memfabric.persist.sqlite_store import KVStore
from memfabric.registry import BackendRegistry


@pytest.fixture
def kv(tmp_path):
    """Create a temporary KVStore instance."""
    store = KVStore(tmp_path / "cache.db", tables=("records", "index_snapshot"))
    yield store
    store.close()


@pytest.fixture
def index():
    return UnifiedIndex()


@pytest.fixture
def anchor():
    return IntegrityAnchor()


@pytest.fixture
def backends():
    """Three in-process backends, all online."""
    return [InMemoryBackend(f"backend{i}") for i in (1, 2, 3)]


@pytest.fixture
def registry(backends):
    reg = BackendRegistry()
    for b in backends:
        reg.register(BackendDescriptor(name=b.name, priority=1, reconciliation_interval_ms=50), b)
    return reg
