"""File request/response schemas."""
from datetime import datetime
from typing import Optional

from codedrop.schemas.base import CamelModel, CamelResponseModel
from codedrop.services.file_service import UploadResult, preview_kind
from codedrop.services.records import SharedFile


class DownloadRequest(CamelModel):
    password: Optional[str] = None


class UploadResponse(CamelResponseModel):
    id: str
    code: str
    original_name: str
    size: int
    mime_type: str
    expires_at: datetime
    expiration_type: str
    download_count: int
    max_downloads: Optional[int] = None
    has_password: bool
    custom_message: Optional[str] = None

    @classmethod
    def from_result(cls, result: UploadResult) -> "UploadResponse":
        record = result.record
        return cls(
            id=result.id,
            code=result.code,
            original_name=record.original_name,
            size=record.size,
            mime_type=record.mime_type,
            expires_at=result.expires_at,
            expiration_type=record.expiration_class.value,
            download_count=record.download_count,
            max_downloads=record.max_downloads,
            has_password=result.has_password,
            custom_message=record.custom_message,
        )


class FileInfoResponse(CamelResponseModel):
    """What a recipient sees before downloading. No blob reference, no hash."""
    id: str
    code: str
    original_name: str
    size: int
    mime_type: str
    expires_at: datetime
    expiration_type: str
    download_count: int
    max_downloads: Optional[int] = None
    has_password: bool
    custom_message: Optional[str] = None
    preview_kind: Optional[str] = None

    @classmethod
    def from_record(cls, record: SharedFile) -> "FileInfoResponse":
        return cls(
            id=record.id,
            code=record.code,
            original_name=record.original_name,
            size=record.size,
            mime_type=record.mime_type,
            expires_at=record.expires_at,
            expiration_type=record.expiration_class.value,
            download_count=record.download_count,
            max_downloads=record.max_downloads,
            has_password=record.has_password,
            custom_message=record.custom_message,
            preview_kind=preview_kind(record.mime_type),
        )


class FileListItem(CamelResponseModel):
    id: str
    code: str
    original_name: str
    size: int
    mime_type: str
    expires_at: datetime
    download_count: int
    max_downloads: Optional[int] = None
    created_at: datetime
    has_password: bool
    is_owned: bool

    @classmethod
    def from_record(cls, record: SharedFile) -> "FileListItem":
        return cls(
            id=record.id,
            code=record.code,
            original_name=record.original_name,
            size=record.size,
            mime_type=record.mime_type,
            expires_at=record.expires_at,
            download_count=record.download_count,
            max_downloads=record.max_downloads,
            created_at=record.created_at,
            has_password=record.has_password,
            is_owned=record.owner_id is not None,
        )
