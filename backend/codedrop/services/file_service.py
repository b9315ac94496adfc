"""File lifecycle operations used by the API layer.

Validation happens here, before any storage I/O. Persistence and quota
accounting are delegated to the record store and the access gate.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

from codedrop.config import settings
from codedrop.services.access_gate import AccessGate, Decision, Grant
from codedrop.services.codes import is_valid_code, normalize_code
from codedrop.services.errors import (
    EmptyUpload,
    FileNotFound,
    FileTooLarge,
    InvalidDownloadLimit,
    MessageTooLong,
    StorageUnavailable,
    UploadTimeout,
)
from codedrop.services.expiration import parse_expiration_class
from codedrop.services.passwords import hash_password_async
from codedrop.services.record_store import FileRecordStore
from codedrop.services.records import NewFile, SharedFile

logger = logging.getLogger(__name__)

MIN_DOWNLOAD_LIMIT = 1
MAX_DOWNLOAD_LIMIT = 1000
MAX_CUSTOM_MESSAGE_LENGTH = 500
DEFAULT_MIME_TYPE = "application/octet-stream"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def preview_kind(mime_type: str) -> Optional[str]:
    """How a client could render the file inline, if at all."""
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if "pdf" in mime_type:
        return "pdf"
    return None


@dataclass(frozen=True)
class UploadResult:
    id: str
    code: str
    expires_at: datetime
    has_password: bool
    record: SharedFile


class FileService:
    def __init__(
        self,
        store: FileRecordStore,
        clock: Callable[[], datetime] = utcnow,
        max_upload_bytes: int = settings.MAX_UPLOAD_BYTES,
    ):
        self.store = store
        self.clock = clock
        self.max_upload_bytes = max_upload_bytes
        self.gate = AccessGate(store, clock)

    async def create_file(
        self,
        data: bytes,
        original_name: str,
        mime_type: Optional[str] = None,
        password: Optional[str] = None,
        max_downloads: Optional[int] = None,
        expiration_class: Optional[str] = None,
        custom_message: Optional[str] = None,
        owner_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> UploadResult:
        """Validate an upload and persist it. Raises UploadRejected subclasses on bad input."""
        retention = parse_expiration_class(expiration_class)
        if max_downloads is not None and not MIN_DOWNLOAD_LIMIT <= max_downloads <= MAX_DOWNLOAD_LIMIT:
            raise InvalidDownloadLimit(
                f"Max downloads must be between {MIN_DOWNLOAD_LIMIT} and {MAX_DOWNLOAD_LIMIT}"
            )
        if custom_message is not None and len(custom_message) > MAX_CUSTOM_MESSAGE_LENGTH:
            raise MessageTooLong(f"Custom message is limited to {MAX_CUSTOM_MESSAGE_LENGTH} characters")
        if not data:
            raise EmptyUpload("No file content provided")
        if len(data) > self.max_upload_bytes:
            raise FileTooLarge(f"File exceeds the {self.max_upload_bytes} byte limit")

        async def _create() -> SharedFile:
            password_hash = await hash_password_async(password) if password else None
            meta = NewFile(
                original_name=original_name or "unnamed",
                mime_type=mime_type or DEFAULT_MIME_TYPE,
                size=len(data),
                expiration_class=retention,
                password_hash=password_hash,
                max_downloads=max_downloads,
                custom_message=custom_message or None,
                owner_id=owner_id,
            )
            return await self.store.create(meta, data, self.clock())

        try:
            record = await asyncio.wait_for(_create(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Upload of {original_name!r} timed out after {timeout}s")
            raise UploadTimeout(f"Upload did not complete within {timeout} seconds") from None

        return UploadResult(
            id=record.id,
            code=record.code,
            expires_at=record.expires_at,
            has_password=record.has_password,
            record=record,
        )

    async def get_file_info(self, code: str) -> SharedFile:
        """Active record for a share code. Raises FileNotFound otherwise."""
        code = normalize_code(code)
        record = None
        if is_valid_code(code):
            record = await self.store.get_by_code(code, self.clock())
        if record is None:
            raise FileNotFound("File not found or expired")
        return record

    async def get_file(self, file_id: str) -> Optional[SharedFile]:
        return await self.store.get_by_id(file_id, self.clock())

    async def authorize_download(self, code: str, password: Optional[str] = None) -> Decision:
        return await self.gate.authorize_download(code, password)

    async def open_download(self, grant: Grant) -> AsyncIterator[bytes]:
        """Open the bytes behind a granted download.

        The first chunk is read here so a blob that vanished (for example swept
        right after the last download slot was taken) raises StorageUnavailable
        before any response has started.
        """
        chunks = self.store.blob_storage.open(grant.blob_ref)
        try:
            first = await anext(chunks)
        except StopAsyncIteration:
            first = b""
        except StorageUnavailable:
            logger.error(f"Blob for granted download of {grant.file_id} is unreadable")
            raise

        async def _stream() -> AsyncIterator[bytes]:
            if first:
                yield first
            async for chunk in chunks:
                yield chunk

        return _stream()

    async def delete_file(self, file_id: str) -> bool:
        """Delete a record and its bytes. False means there was nothing to delete."""
        return await self.store.delete(file_id)

    async def list_active_files(self) -> list[SharedFile]:
        return await self.store.list_active(self.clock())

    async def list_files_by_owner(self, owner_id: str) -> list[SharedFile]:
        return await self.store.list_by_owner(owner_id, self.clock())
