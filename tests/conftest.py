"""
Shared fixtures for Nazar Gateway tests.
"""

import builtins
import contextlib
import datetime
import os
import tempfile

import pytest

from nazar_gateway.classifier import classify
from nazar_gateway.models import RawChangeEvent

# Fixed "now" used by engine tests: Wednesday 2024-05-15 12:00:00 UTC
NOW = int(datetime.datetime(2024, 5, 15, 12, 0, tzinfo=datetime.timezone.utc).timestamp() * 1000)
HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


@pytest.fixture
def temp_db(monkeypatch):
    """Create temporary test database with full schema."""
    import nazar_gateway.config as config
    import nazar_gateway.database as database

    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    monkeypatch.setattr(config, "DATABASE_FILE", path)

    try:
        database.init_db(path)
        yield path
    finally:
        for suffix in ("", "-wal", "-shm"):
            with contextlib.suppress(builtins.BaseException):
                os.unlink(path + suffix)


@pytest.fixture
def sqlite_store(temp_db):
    from nazar_gateway.database import SqliteEventStore

    return SqliteEventStore(temp_db)


@pytest.fixture
def memory_store():
    from nazar_gateway.event_store import InMemoryEventStore

    return InMemoryEventStore()


@pytest.fixture(params=["sqlite", "memory"])
def store(request):
    """Each backend in turn; engine behaviour must not depend on the backend."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def make_record():
    """Build a ClassifiedRecord through the classifier from a few primitives."""

    def _make(path="/a/b/report.pdf", change_kind="add", client_id="AA:BB:CC:DD:EE:FF",
              timestamp=NOW - HOUR_MS, size=0):
        return classify(RawChangeEvent(path=path, change_kind=change_kind, client_id=client_id,
                                       timestamp=timestamp, size=size))

    return _make


@pytest.fixture
def sample_payload():
    """Sample wire payload as a watcher would send it."""
    return {
        "filePath": "/home/user/docs/report.PDF",
        "fileName": "report.PDF",
        "fileExtension": ".PDF",
        "directory": "/home/user/docs",
        "fileType": "document",
        "category": "document",
        "changeType": "add",
        "timestamp": NOW - HOUR_MS,
        "size": 2048,
        "isDirectory": False,
        "clientMacAddress": "AA:BB:CC:DD:EE:FF",
    }
