"""Tests for the file lifecycle operations."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest

from codedrop.services.blob_storage import LocalBlobStorage
from codedrop.services.errors import (
    EmptyUpload,
    FileNotFound,
    FileTooLarge,
    InvalidDownloadLimit,
    InvalidExpirationClass,
    MessageTooLong,
    StorageUnavailable,
    UploadTimeout,
)
from codedrop.services.expiration import NEVER_EXPIRES_AT, ExpirationClass
from codedrop.services.file_service import FileService, preview_kind
from codedrop.services.record_store import InMemoryFileRecordStore
from codedrop.services.sql_record_store import SqlFileRecordStore
from conftest import sqlite_session_factory


class SlowUploadStorage(LocalBlobStorage):
    async def upload(self, data: bytes, original_name: str) -> str:
        await asyncio.sleep(10)
        return await super().upload(data, original_name)


class SlowInsertStore(InMemoryFileRecordStore):
    async def _insert(self, record) -> None:
        await asyncio.sleep(0.2)
        await super()._insert(record)


class SlowSessionCloseStore(SqlFileRecordStore):
    """Commits the row, then stalls the way a pooled connection reset can."""

    async def _insert(self, record) -> None:
        await super()._insert(record)
        await asyncio.sleep(0.5)


def test_one_hour_expiry_scenario(open_store, clock) -> None:
    async def scenario() -> None:
        async with open_store() as store:
            files = FileService(store, clock=clock)
            t0 = clock()
            upload = await files.create_file(b"data", "a.txt", expiration_class="1h")
            assert upload.expires_at == t0 + timedelta(hours=1)

            clock.advance(minutes=59)
            info = await files.get_file_info(upload.code)
            assert info.id == upload.id

            clock.advance(minutes=2)
            with pytest.raises(FileNotFound):
                await files.get_file_info(upload.code)

    asyncio.run(scenario())


def test_default_and_never_expiry(open_store, clock) -> None:
    async def scenario() -> None:
        async with open_store() as store:
            files = FileService(store, clock=clock)
            default = await files.create_file(b"data", "a.txt")
            forever = await files.create_file(b"data", "b.txt", expiration_class="never")

            assert default.record.expiration_class is ExpirationClass.ONE_DAY
            assert default.expires_at == clock.now + timedelta(hours=24)
            assert forever.expires_at == NEVER_EXPIRES_AT

            clock.advance(days=3650)
            assert (await files.get_file_info(forever.code)).id == forever.id

    asyncio.run(scenario())


def test_file_info_fields(open_store, clock) -> None:
    async def scenario() -> None:
        async with open_store() as store:
            files = FileService(store, clock=clock)
            upload = await files.create_file(
                b"\x89PNG....",
                "cat.png",
                "image/png",
                password="pw",
                max_downloads=3,
                custom_message="enjoy",
            )
            info = await files.get_file_info(upload.code)
            assert info.original_name == "cat.png"
            assert info.mime_type == "image/png"
            assert info.size == 8
            assert info.max_downloads == 3
            assert info.has_password
            assert info.password_hash != "pw"
            assert info.custom_message == "enjoy"
            assert info.owner_id is None

    asyncio.run(scenario())


def test_empty_password_means_unprotected(open_store, clock) -> None:
    async def scenario() -> None:
        async with open_store() as store:
            files = FileService(store, clock=clock)
            upload = await files.create_file(b"data", "a.txt", password="")
            assert not upload.has_password

    asyncio.run(scenario())


@pytest.mark.parametrize(
    ("kwargs", "error"),
    [
        ({"max_downloads": 0}, InvalidDownloadLimit),
        ({"max_downloads": 1001}, InvalidDownloadLimit),
        ({"expiration_class": "2d"}, InvalidExpirationClass),
        ({"custom_message": "x" * 501}, MessageTooLong),
    ],
)
def test_invalid_input_is_rejected_before_storage(kwargs, error, clock, blob_storage, blob_dir: Path) -> None:
    async def scenario() -> None:
        store = InMemoryFileRecordStore(blob_storage)
        files = FileService(store, clock=clock)
        with pytest.raises(error):
            await files.create_file(b"data", "a.txt", **kwargs)
        assert await store.list_active(clock()) == []
        assert list(blob_dir.iterdir()) == []

    asyncio.run(scenario())


def test_size_limits(clock, blob_storage) -> None:
    async def scenario() -> None:
        files = FileService(InMemoryFileRecordStore(blob_storage), clock=clock, max_upload_bytes=4)
        with pytest.raises(EmptyUpload):
            await files.create_file(b"", "a.txt")
        with pytest.raises(FileTooLarge):
            await files.create_file(b"12345", "a.txt")
        assert (await files.create_file(b"1234", "a.txt")).record.size == 4

    asyncio.run(scenario())


def test_boundary_download_limits_are_accepted(clock, blob_storage) -> None:
    async def scenario() -> None:
        files = FileService(InMemoryFileRecordStore(blob_storage), clock=clock)
        assert (await files.create_file(b"x", "a", max_downloads=1)).record.max_downloads == 1
        assert (await files.create_file(b"x", "a", max_downloads=1000)).record.max_downloads == 1000
        assert (await files.create_file(b"x", "a", custom_message="m" * 500)).record.custom_message

    asyncio.run(scenario())


def test_delete_twice_is_a_no_op(open_store, clock) -> None:
    async def scenario() -> None:
        async with open_store() as store:
            files = FileService(store, clock=clock)
            upload = await files.create_file(b"data", "a.txt")

            assert await files.delete_file(upload.id) is True
            assert await files.delete_file(upload.id) is False
            with pytest.raises(FileNotFound):
                await files.get_file_info(upload.code)

    asyncio.run(scenario())


def test_listing_by_owner(open_store, clock) -> None:
    async def scenario() -> None:
        async with open_store() as store:
            files = FileService(store, clock=clock)
            mine = await files.create_file(b"1", "mine.txt", owner_id="me")
            clock.advance(seconds=1)
            anonymous = await files.create_file(b"2", "anon.txt")
            clock.advance(seconds=1)
            short = await files.create_file(b"3", "short.txt", owner_id="me", expiration_class="1h")

            assert [f.id for f in await files.list_files_by_owner("me")] == [short.id, mine.id]
            assert [f.id for f in await files.list_active_files()] == [short.id, anonymous.id, mine.id]

            clock.advance(hours=2)
            assert [f.id for f in await files.list_files_by_owner("me")] == [mine.id]

    asyncio.run(scenario())


def test_thousand_concurrent_uploads_get_distinct_codes(clock, blob_storage) -> None:
    async def scenario() -> None:
        files = FileService(InMemoryFileRecordStore(blob_storage), clock=clock)
        uploads = await asyncio.gather(
            *(files.create_file(b"x", f"f{i}.txt") for i in range(1000))
        )
        assert len({u.code for u in uploads}) == 1000
        assert len(await files.list_active_files()) == 1000

    asyncio.run(scenario())


def test_timed_out_upload_leaves_nothing_behind(clock, blob_dir: Path) -> None:
    async def scenario() -> None:
        store = InMemoryFileRecordStore(SlowUploadStorage(blob_dir))
        files = FileService(store, clock=clock)
        with pytest.raises(UploadTimeout):
            await files.create_file(b"data", "a.txt", timeout=0.05)
        assert await store.list_active(clock()) == []
        assert list(blob_dir.iterdir()) == []

    asyncio.run(scenario())


def test_cancelled_insert_discards_blob(clock, blob_storage, blob_dir: Path) -> None:
    async def scenario() -> None:
        store = SlowInsertStore(blob_storage)
        files = FileService(store, clock=clock)
        with pytest.raises(UploadTimeout):
            await files.create_file(b"data", "a.txt", timeout=0.05)
        assert await store.list_active(clock()) == []
        assert list(blob_dir.iterdir()) == []

    asyncio.run(scenario())


def test_timeout_after_commit_rolls_back_record_and_blob(clock, blob_storage, blob_dir: Path, tmp_path: Path) -> None:
    async def scenario() -> None:
        async with sqlite_session_factory(tmp_path / "slow.db") as factory:
            store = SlowSessionCloseStore(factory, blob_storage)
            files = FileService(store, clock=clock)
            with pytest.raises(UploadTimeout):
                await files.create_file(b"data", "a.txt", timeout=0.2)
            assert await store.list_active(clock()) == []
            assert await store.list_expired(clock() + timedelta(days=400)) == []
            assert list(blob_dir.iterdir()) == []

    asyncio.run(scenario())


@pytest.mark.parametrize(
    ("mime_type", "kind"),
    [
        ("image/png", "image"),
        ("video/mp4", "video"),
        ("application/pdf", "pdf"),
        ("text/plain", None),
    ],
)
def test_preview_kind(mime_type: str, kind) -> None:
    assert preview_kind(mime_type) == kind


def test_open_download_streams_all_chunks(clock, blob_storage) -> None:
    async def scenario() -> None:
        files = FileService(InMemoryFileRecordStore(blob_storage), clock=clock)
        data = b"x" * (200 * 1024) + b"tail"
        upload = await files.create_file(data, "big.bin")
        grant = await files.authorize_download(upload.code)

        chunks = await files.open_download(grant)
        assert b"".join([chunk async for chunk in chunks]) == data

    asyncio.run(scenario())


def test_open_download_raises_before_streaming_when_blob_is_gone(clock, blob_storage, blob_dir: Path) -> None:
    async def scenario() -> None:
        files = FileService(InMemoryFileRecordStore(blob_storage), clock=clock)
        upload = await files.create_file(b"data", "a.txt")
        grant = await files.authorize_download(upload.code)
        for blob in blob_dir.iterdir():
            blob.unlink()

        with pytest.raises(StorageUnavailable):
            await files.open_download(grant)

    asyncio.run(scenario())
