from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from codedrop.database import build_engine, build_session_factory
from codedrop.models import Base
from codedrop.services.accounts import InMemoryAccountStore, SqlAccountStore
from codedrop.services.blob_storage import LocalBlobStorage
from codedrop.services.record_store import InMemoryFileRecordStore
from codedrop.services.sql_record_store import SqlFileRecordStore

T0 = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable UTC clock; call it to read the current time."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def blob_dir(tmp_path: Path) -> Path:
    return tmp_path / "blobs"


@pytest.fixture
def blob_storage(blob_dir: Path) -> LocalBlobStorage:
    return LocalBlobStorage(blob_dir)


@asynccontextmanager
async def sqlite_session_factory(db_path: Path):
    """Temporary SQLite database with all tables created. Must be used inside one event loop."""
    engine = build_engine(f"sqlite+aiosqlite:///{db_path.as_posix()}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def backend(request: pytest.FixtureRequest) -> str:
    return request.param


@pytest.fixture
def open_store(backend: str, tmp_path: Path, blob_storage: LocalBlobStorage):
    """Returns an async context manager factory yielding a store of the current backend."""

    @asynccontextmanager
    async def _open(blobs=None, **kwargs):
        blobs = blobs or blob_storage
        if backend == "memory":
            yield InMemoryFileRecordStore(blobs, **kwargs)
            return
        async with sqlite_session_factory(tmp_path / "files.db") as factory:
            yield SqlFileRecordStore(factory, blobs, **kwargs)

    return _open


@pytest.fixture
def open_account_store(backend: str, tmp_path: Path):
    """Same as open_store, for account stores."""

    @asynccontextmanager
    async def _open():
        if backend == "memory":
            yield InMemoryAccountStore()
            return
        async with sqlite_session_factory(tmp_path / "accounts.db") as factory:
            yield SqlAccountStore(factory)

    return _open
