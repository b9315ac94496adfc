"""Tests for the retention sweeper."""

from __future__ import annotations

import asyncio
from pathlib import Path

from codedrop.services.blob_storage import LocalBlobStorage
from codedrop.services.errors import StorageUnavailable
from codedrop.services.file_service import FileService
from codedrop.services.record_store import InMemoryFileRecordStore
from codedrop.services.sweeper import RetentionSweeper


class FlakyDeleteStorage(LocalBlobStorage):
    """Refuses to delete the blobs listed in `broken` until they are removed from it."""

    def __init__(self, base_path: Path):
        super().__init__(base_path)
        self.broken: set[str] = set()

    async def delete(self, blob_ref: str) -> None:
        if blob_ref in self.broken:
            raise StorageUnavailable("blob store timeout")
        await super().delete(blob_ref)


def test_sweep_purges_expired_once(open_store, clock, blob_dir: Path) -> None:
    async def scenario() -> None:
        async with open_store() as store:
            files = FileService(store, clock=clock)
            sweeper = RetentionSweeper(store, clock=clock)
            short = await files.create_file(b"1", "a.txt", expiration_class="1h")
            await files.create_file(b"2", "b.txt", expiration_class="1h")
            long = await files.create_file(b"3", "c.txt", expiration_class="7d")

            assert await sweeper.sweep() == 0

            clock.advance(hours=2)
            assert await sweeper.sweep() == 2
            assert await sweeper.sweep() == 0

            assert [f.id for f in await files.list_active_files()] == [long.id]
            assert await store.list_expired(clock()) == []
            assert [p.name for p in blob_dir.iterdir()] == [long.record.blob_ref]
            assert await files.delete_file(short.id) is False

    asyncio.run(scenario())


def test_sweep_purges_exhausted_records(open_store, clock) -> None:
    async def scenario() -> None:
        async with open_store() as store:
            files = FileService(store, clock=clock)
            sweeper = RetentionSweeper(store, clock=clock)
            once = await files.create_file(b"1", "a.txt", max_downloads=1, expiration_class="never")
            twice = await files.create_file(b"2", "b.txt", max_downloads=2)

            await files.authorize_download(once.code)
            await files.authorize_download(twice.code)

            assert await sweeper.sweep() == 1
            assert [f.id for f in await files.list_active_files()] == [twice.id]

    asyncio.run(scenario())


def test_sweep_continues_past_failures_and_retries(clock, blob_dir: Path) -> None:
    async def scenario() -> None:
        blobs = FlakyDeleteStorage(blob_dir)
        store = InMemoryFileRecordStore(blobs)
        files = FileService(store, clock=clock)
        sweeper = RetentionSweeper(store, clock=clock)
        uploads = [await files.create_file(b"x", f"{i}.txt", expiration_class="1h") for i in range(3)]
        blobs.broken.add(uploads[1].record.blob_ref)

        clock.advance(hours=2)
        assert await sweeper.sweep() == 2
        assert [r.id for r in await store.list_expired(clock())] == [uploads[1].id]

        blobs.broken.clear()
        assert await sweeper.sweep() == 1
        assert await store.list_expired(clock()) == []
        assert list(blob_dir.iterdir()) == []

    asyncio.run(scenario())


def test_run_forever_sweeps_until_cancelled(clock, blob_storage) -> None:
    async def scenario() -> None:
        store = InMemoryFileRecordStore(blob_storage)
        files = FileService(store, clock=clock)
        sweeper = RetentionSweeper(store, clock=clock, interval_seconds=0.01)
        await files.create_file(b"x", "a.txt", expiration_class="1h")
        clock.advance(hours=2)

        task = asyncio.create_task(sweeper.run_forever())
        await asyncio.sleep(0.05)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert task.cancelled()
        assert await store.list_expired(clock()) == []

    asyncio.run(scenario())


def test_run_forever_survives_store_outage(clock, blob_storage) -> None:
    class DownStore(InMemoryFileRecordStore):
        calls = 0

        async def list_expired(self, now):
            DownStore.calls += 1
            raise StorageUnavailable("database offline")

    async def scenario() -> None:
        sweeper = RetentionSweeper(DownStore(blob_storage), clock=clock, interval_seconds=0.01)
        task = asyncio.create_task(sweeper.run_forever())
        await asyncio.sleep(0.05)
        assert not task.done()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        assert DownStore.calls >= 2

    asyncio.run(scenario())
