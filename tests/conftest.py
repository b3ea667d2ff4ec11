import pytest

from conflict_engine.storage import InMemoryStorageBackend, SQLiteStorageBackend
from conflict_engine.temporal import LogicalClock

from .fixtures import NOW


@pytest.fixture
def store():
    return InMemoryStorageBackend()


@pytest.fixture
def sqlite_path(tmp_path):
    return str(tmp_path / "cce.db")


@pytest.fixture
def sqlite_store(sqlite_path):
    backend = SQLiteStorageBackend(sqlite_path)
    yield backend
    backend.close()


@pytest.fixture
def clock():
    return LogicalClock.manual(NOW)
