"""Canonical in-core representation of a shared file.

Both store backends return these snapshots; the ORM row never leaves the SQL
store. Field names are snake_case; the API layer maps them to camelCase.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from codedrop.services.expiration import ExpirationClass


@dataclass(frozen=True)
class NewFile:
    """Validated upload metadata handed to the store."""
    original_name: str
    mime_type: str
    size: int
    expiration_class: ExpirationClass
    password_hash: Optional[str] = None
    max_downloads: Optional[int] = None
    custom_message: Optional[str] = None
    owner_id: Optional[str] = None


@dataclass(frozen=True)
class SharedFile:
    id: str
    code: str
    original_name: str
    mime_type: str
    size: int
    blob_ref: str
    expiration_class: ExpirationClass
    expires_at: datetime
    created_at: datetime
    download_count: int = 0
    password_hash: Optional[str] = None
    max_downloads: Optional[int] = None
    custom_message: Optional[str] = None
    owner_id: Optional[str] = None

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    @property
    def is_exhausted(self) -> bool:
        return self.max_downloads is not None and self.download_count >= self.max_downloads

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now

    def with_download_count(self, count: int) -> "SharedFile":
        return replace(self, download_count=count)
