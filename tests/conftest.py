import threading
import time
from datetime import datetime, timezone

import pytest

from lifelog_ingestor.db import InMemoryLifelogStore, SqliteLifelogStore
from lifelog_ingestor.utils.schemas import LifelogEntry

FIXED_NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def make_payload(lifelog_id: str, created_at: str = "2024-01-01T00:00:00Z", **extra) -> dict:
    payload = {
        "id": lifelog_id,
        "title": f"Lifelog {lifelog_id}",
        "markdown": f"# Lifelog {lifelog_id}",
        "createdAt": created_at,
    }
    payload.update(extra)
    return payload


def make_entry(lifelog_id: str, created_at: str = "2024-01-01T00:00:00Z", **extra) -> LifelogEntry:
    return LifelogEntry.from_payload(make_payload(lifelog_id, created_at, **extra))


class FakeSource:
    """Upstream stand-in that records the windows it was asked for."""

    def __init__(self, payloads: list[dict] | None = None, error: Exception | None = None):
        self.payloads = payloads or []
        self.error = error
        self.windows = []

    def fetch_batch(self, window):
        self.windows.append(window)
        if self.error is not None:
            raise self.error
        return [LifelogEntry.from_payload(p) for p in self.payloads]

    def close(self):
        pass


class BlockingSource(FakeSource):
    """Holds fetch_batch open until `release` is set."""

    def __init__(self, payloads: list[dict] | None = None):
        super().__init__(payloads)
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def fetch_batch(self, window):
        self.calls += 1
        self.entered.set()
        assert self.release.wait(timeout=5), "test never released the fetch"
        return super().fetch_batch(window)


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def sqlite_store(tmp_path):
    store = SqliteLifelogStore(str(tmp_path / "data" / "lifelogs.db"))
    store.create_tables()
    return store


@pytest.fixture
def memory_store():
    return InMemoryLifelogStore()


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path):
    """Every storage test runs against both backends."""
    if request.param == "sqlite":
        backend = SqliteLifelogStore(str(tmp_path / "lifelogs.db"))
    else:
        backend = InMemoryLifelogStore()
    backend.create_tables()
    return backend
