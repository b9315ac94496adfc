"""File record store interface and the in-memory backend.

The store owns the create/delete orchestration with blob storage so every
backend gets the same ordering guarantees:

- create: blob upload first, then metadata. The insert always runs to
  completion; if the caller failed or was cancelled, a committed row is
  removed before the uploaded blob is discarded, so no record ever points at
  missing bytes and no blob is left without a record.
- delete: blob first, then metadata. If the blob delete fails the row stays
  and the next sweep retries.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

from codedrop.services.blob_storage import BlobStorage
from codedrop.services.codes import generate_code
from codedrop.services.errors import CodeSpaceExhausted
from codedrop.services.expiration import compute_expiry
from codedrop.services.records import NewFile, SharedFile

logger = logging.getLogger(__name__)

DEFAULT_CODE_ATTEMPTS = 10


class CodeCollision(Exception):
    """Raised by a backend insert when the generated code is already taken."""
    pass


class FileRecordStore(ABC):
    """Durable mapping from record id (and share code) to file metadata."""

    backend_name = "abstract"

    def __init__(
        self,
        blob_storage: BlobStorage,
        code_attempts: int = DEFAULT_CODE_ATTEMPTS,
        code_generator: Callable[[], str] = generate_code,
    ):
        self.blob_storage = blob_storage
        self.code_attempts = code_attempts
        self.code_generator = code_generator

    async def create(self, meta: NewFile, data: bytes, now: datetime) -> SharedFile:
        """Upload the bytes, then persist a record with a fresh unique code."""
        expires_at = compute_expiry(meta.expiration_class, now)
        blob_ref = await self.blob_storage.upload(data, meta.original_name)
        # A cancelled caller must not interrupt the insert between commit and return
        insert = asyncio.ensure_future(self._insert_with_unique_code(meta, blob_ref, expires_at, now))
        try:
            return await asyncio.shield(insert)
        except BaseException:
            await self._abort_create(insert, blob_ref)
            raise

    async def _abort_create(self, insert: asyncio.Future, blob_ref: str) -> None:
        """Undo a create whose caller failed or was cancelled."""
        if not insert.done():
            await asyncio.wait([insert])
        if not insert.cancelled() and insert.exception() is None:
            record = insert.result()
            try:
                await self._remove(record.id)
            except Exception as e:
                # The row still references the blob, so the blob has to stay too
                logger.error(f"Failed to remove record {record.id} after aborted create: {e}")
                return
            logger.info(f"Rolled back file {record.id} after aborted create")
        await self._discard_blob(blob_ref)

    async def _insert_with_unique_code(
        self, meta: NewFile, blob_ref: str, expires_at: datetime, now: datetime
    ) -> SharedFile:
        for attempt in range(1, self.code_attempts + 1):
            record = SharedFile(
                id=str(uuid.uuid4()),
                code=self.code_generator(),
                original_name=meta.original_name,
                mime_type=meta.mime_type,
                size=meta.size,
                blob_ref=blob_ref,
                expiration_class=meta.expiration_class,
                expires_at=expires_at,
                created_at=now,
                password_hash=meta.password_hash,
                max_downloads=meta.max_downloads,
                custom_message=meta.custom_message,
                owner_id=meta.owner_id,
            )
            try:
                await self._insert(record)
            except CodeCollision:
                logger.warning(f"Share code collision (attempt {attempt}/{self.code_attempts})")
                continue
            logger.info(f"Created file {record.id} with code {record.code} (expires {expires_at.isoformat()})")
            return record
        raise CodeSpaceExhausted(f"No free share code after {self.code_attempts} attempts")

    async def _discard_blob(self, blob_ref: str) -> None:
        try:
            await self.blob_storage.delete(blob_ref)
        except Exception as e:
            # The original error is what the caller needs to see
            logger.error(f"Failed to discard blob {blob_ref} after aborted create: {e}")

    async def delete(self, record_id: str) -> bool:
        """Delete a record and its blob regardless of expiry.

        Returns False when the record does not exist (idempotent).
        """
        record = await self._get_any(record_id)
        if record is None:
            return False
        await self.blob_storage.delete(record.blob_ref)
        removed = await self._remove(record_id)
        if removed:
            logger.info(f"Deleted file {record_id} (code {record.code})")
        return removed

    # ── Backend primitives ───────────────────────────────────────

    @abstractmethod
    async def _insert(self, record: SharedFile) -> None:
        """Persist a new record. Raises CodeCollision if the code is taken."""

    @abstractmethod
    async def _get_any(self, record_id: str) -> Optional[SharedFile]:
        """Fetch a record including expired ones."""

    @abstractmethod
    async def _remove(self, record_id: str) -> bool:
        pass

    @abstractmethod
    async def get_by_code(self, code: str, now: datetime) -> Optional[SharedFile]:
        """Active record with this code, else None."""

    @abstractmethod
    async def get_by_id(self, record_id: str, now: datetime) -> Optional[SharedFile]:
        """Active record with this id, else None."""

    @abstractmethod
    async def list_active(self, now: datetime) -> list[SharedFile]:
        """All active records, newest first."""

    @abstractmethod
    async def list_by_owner(self, owner_id: str, now: datetime) -> list[SharedFile]:
        """Active records owned by `owner_id`, newest first."""

    @abstractmethod
    async def list_expired(self, now: datetime) -> list[SharedFile]:
        """Every record with expires_at <= now, swept or not."""

    @abstractmethod
    async def list_exhausted(self, now: datetime) -> list[SharedFile]:
        """Active records whose download limit is used up."""

    @abstractmethod
    async def consume_download(self, record_id: str, now: datetime) -> bool:
        """Atomically increment download_count if the record is active and under quota.

        Returns True iff the increment happened.
        """

    async def ping(self) -> None:
        """Raise StorageUnavailable if the backend cannot be reached."""
        return None


class InMemoryFileRecordStore(FileRecordStore):
    """Process-local store backed by dicts.

    Suitable for development and single-process deployments only: state is
    lost on restart and is not shared between workers or instances.
    """

    backend_name = "memory"

    def __init__(self, blob_storage: BlobStorage, **kwargs):
        super().__init__(blob_storage, **kwargs)
        self._records: dict[str, SharedFile] = {}
        self._ids_by_code: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def _insert(self, record: SharedFile) -> None:
        async with self._lock:
            # Codes stay reserved until the record is deleted, expired or not
            if record.code in self._ids_by_code:
                raise CodeCollision(record.code)
            self._records[record.id] = record
            self._ids_by_code[record.code] = record.id

    async def _get_any(self, record_id: str) -> Optional[SharedFile]:
        return self._records.get(record_id)

    async def _remove(self, record_id: str) -> bool:
        async with self._lock:
            record = self._records.pop(record_id, None)
            if record is None:
                return False
            self._ids_by_code.pop(record.code, None)
            return True

    async def get_by_code(self, code: str, now: datetime) -> Optional[SharedFile]:
        record_id = self._ids_by_code.get(code)
        if record_id is None:
            return None
        return await self.get_by_id(record_id, now)

    async def get_by_id(self, record_id: str, now: datetime) -> Optional[SharedFile]:
        record = self._records.get(record_id)
        if record is None or not record.is_active(now):
            return None
        return record

    def _newest_first(self, records) -> list[SharedFile]:
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def list_active(self, now: datetime) -> list[SharedFile]:
        return self._newest_first(r for r in self._records.values() if r.is_active(now))

    async def list_by_owner(self, owner_id: str, now: datetime) -> list[SharedFile]:
        return self._newest_first(
            r for r in self._records.values() if r.owner_id == owner_id and r.is_active(now)
        )

    async def list_expired(self, now: datetime) -> list[SharedFile]:
        return [r for r in self._records.values() if not r.is_active(now)]

    async def list_exhausted(self, now: datetime) -> list[SharedFile]:
        return [r for r in self._records.values() if r.is_active(now) and r.is_exhausted]

    async def consume_download(self, record_id: str, now: datetime) -> bool:
        async with self._lock:
            record = self._records.get(record_id)
            if record is None or not record.is_active(now) or record.is_exhausted:
                return False
            self._records[record_id] = record.with_download_count(record.download_count + 1)
            return True
