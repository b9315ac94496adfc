"""Blob storage abstraction. The core only keeps the returned reference.

Local filesystem is the only bundled backend; other providers implement
BlobStorage and are passed to the record store.
"""
import logging
import os
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator

import aiofiles

from codedrop.config import settings
from codedrop.services.errors import BlobUploadFailed, StorageUnavailable

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class BlobStorage(ABC):
    """Opaque object storage for file bytes."""

    @abstractmethod
    async def upload(self, data: bytes, original_name: str) -> str:
        """Store bytes and return a reference. Raises BlobUploadFailed."""

    @abstractmethod
    def open(self, blob_ref: str) -> AsyncIterator[bytes]:
        """Yield the stored bytes in chunks."""

    @abstractmethod
    async def delete(self, blob_ref: str) -> None:
        """Remove the object. Missing objects are not an error."""


class LocalBlobStorage(BlobStorage):
    """Stores each blob as one file under `base_path`, named by a fresh UUID."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, blob_ref: str) -> Path:
        # References are bare file names; anything else would escape base_path
        if blob_ref != Path(blob_ref).name:
            raise ValueError(f"Invalid blob reference: {blob_ref!r}")
        return self.base_path / blob_ref

    async def upload(self, data: bytes, original_name: str) -> str:
        """Save file bytes. Returns the blob file name."""
        blob_ref = f"{uuid.uuid4()}{Path(original_name).suffix}"
        file_path = self._path(blob_ref)
        try:
            async with aiofiles.open(file_path, "wb") as f:
                await f.write(data)
        except BaseException as e:
            # Failed or cancelled writes must not leave a partial file behind
            if file_path.exists():
                os.remove(file_path)
            if isinstance(e, OSError):
                raise BlobUploadFailed(f"Could not write blob {blob_ref}: {e}") from e
            raise
        return blob_ref

    async def open(self, blob_ref: str) -> AsyncIterator[bytes]:
        """Read file bytes from storage in chunks."""
        try:
            async with aiofiles.open(self._path(blob_ref), "rb") as f:
                while chunk := await f.read(CHUNK_SIZE):
                    yield chunk
        except OSError as e:
            raise StorageUnavailable(f"Could not read blob {blob_ref}: {e}") from e

    async def delete(self, blob_ref: str) -> None:
        """Delete file from storage."""
        path = self._path(blob_ref)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.debug(f"Blob {blob_ref} already gone")
        except OSError as e:
            raise StorageUnavailable(f"Could not delete blob {blob_ref}: {e}") from e


def build_blob_storage() -> BlobStorage:
    """Blob store selected by FILE_STORAGE_TYPE."""
    if settings.FILE_STORAGE_TYPE == "local":
        return LocalBlobStorage(settings.FILE_STORAGE_PATH)
    raise ValueError(f"Unknown storage type: {settings.FILE_STORAGE_TYPE}")
