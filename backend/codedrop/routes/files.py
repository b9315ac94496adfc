"""Files API routes: upload, lookup by code, download, list, delete."""
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, File as FastAPIFile, Form, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse

from codedrop.config import settings
from codedrop.dependencies import get_current_user_id, get_file_service, require_user_id
from codedrop.schemas.common import DeleteResponse
from codedrop.schemas.file import DownloadRequest, FileInfoResponse, FileListItem, UploadResponse
from codedrop.services.access_gate import Reject, RejectReason
from codedrop.services.errors import (
    CodedropError,
    CodeSpaceExhausted,
    FileNotFound,
    FileTooLarge,
    InvalidDownloadLimit,
    StorageUnavailable,
    UploadRejected,
    UploadTimeout,
)
from codedrop.services.file_service import FileService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["files"])

NOT_FOUND_DETAIL = "File not found or expired"

_REJECT_STATUS = {
    RejectReason.NOT_FOUND: (404, NOT_FOUND_DETAIL),
    RejectReason.WRONG_PASSWORD: (401, "Invalid or missing password"),
    RejectReason.QUOTA_EXCEEDED: (403, "Download limit reached"),
}


def _http_error(e: CodedropError) -> HTTPException:
    if isinstance(e, FileNotFound):
        return HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    if isinstance(e, FileTooLarge):
        return HTTPException(status_code=413, detail=str(e))
    if isinstance(e, UploadRejected):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, UploadTimeout):
        return HTTPException(status_code=504, detail=str(e))
    if isinstance(e, (StorageUnavailable, CodeSpaceExhausted)):
        return HTTPException(status_code=503, detail="Storage temporarily unavailable")
    return HTTPException(status_code=500, detail="Internal error")


def _parse_download_limit(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise InvalidDownloadLimit("Max downloads must be a whole number") from None


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted == filename:
        return f'attachment; filename="{filename}"'
    return f"attachment; filename*=utf-8''{quoted}"


@router.post("/upload", response_model=UploadResponse, status_code=201)
async def upload_file(
    file: UploadFile = FastAPIFile(...),
    password: Optional[str] = Form(None),
    max_downloads: Optional[str] = Form(None, alias="maxDownloads"),
    expiration_type: Optional[str] = Form(None, alias="expirationType"),
    custom_message: Optional[str] = Form(None, alias="customMessage"),
    user_id: Optional[str] = Depends(get_current_user_id),
    files: FileService = Depends(get_file_service),
):
    """Upload a file and get its share code."""
    try:
        # Never buffer more than one byte past the limit
        limit = files.max_upload_bytes
        if file.size is not None and file.size > limit:
            raise FileTooLarge(f"File exceeds the {limit} byte limit")
        contents = await file.read(limit + 1)
        result = await files.create_file(
            contents,
            original_name=file.filename or "unnamed",
            mime_type=file.content_type,
            password=password or None,
            max_downloads=_parse_download_limit(max_downloads),
            expiration_class=expiration_type,
            custom_message=custom_message or None,
            owner_id=user_id,
            timeout=settings.UPLOAD_TIMEOUT_SECONDS,
        )
    except CodedropError as e:
        logger.warning(f"Upload of {file.filename!r} failed: {e}")
        raise _http_error(e)
    return UploadResponse.from_result(result)


@router.get("/file/{code}", response_model=FileInfoResponse)
async def get_file_info(code: str, files: FileService = Depends(get_file_service)):
    """File metadata for a share code."""
    try:
        record = await files.get_file_info(code)
    except CodedropError as e:
        raise _http_error(e)
    return FileInfoResponse.from_record(record)


@router.post("/download/{code}")
async def download_file(
    code: str,
    body: Optional[DownloadRequest] = Body(None),
    files: FileService = Depends(get_file_service),
):
    """Check password and quota, count the download, then stream the bytes."""
    try:
        decision = await files.authorize_download(code, body.password if body else None)
    except CodedropError as e:
        raise _http_error(e)
    if isinstance(decision, Reject):
        status_code, detail = _REJECT_STATUS[decision.reason]
        raise HTTPException(status_code=status_code, detail=detail)

    try:
        chunks = await files.open_download(decision)
    except CodedropError as e:
        raise _http_error(e)
    return StreamingResponse(
        chunks,
        media_type=decision.mime_type,
        headers={
            "Content-Disposition": _content_disposition(decision.original_name),
            "Content-Length": str(decision.size),
        },
    )


@router.get("/files", response_model=list[FileListItem])
async def list_files(
    user_id: Optional[str] = Query(None, alias="userId"),
    files: FileService = Depends(get_file_service),
):
    """Active files, newest first, optionally only those of one owner."""
    try:
        if user_id:
            records = await files.list_files_by_owner(user_id)
        else:
            records = await files.list_active_files()
    except CodedropError as e:
        raise _http_error(e)
    return [FileListItem.from_record(r) for r in records]


@router.get("/files/user", response_model=list[FileListItem])
async def list_my_files(
    user_id: str = Depends(require_user_id),
    files: FileService = Depends(get_file_service),
):
    """Active files owned by the logged-in account."""
    try:
        records = await files.list_files_by_owner(user_id)
    except CodedropError as e:
        raise _http_error(e)
    return [FileListItem.from_record(r) for r in records]


@router.delete("/file/{file_id}", response_model=DeleteResponse)
async def delete_file(
    file_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    files: FileService = Depends(get_file_service),
):
    """Delete a file and its bytes. Owned files can only be deleted by their owner."""
    try:
        record = await files.get_file(file_id)
        if record is None:
            raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
        if record.owner_id is not None and record.owner_id != user_id:
            raise HTTPException(status_code=403, detail="Not allowed to delete this file")
        deleted = await files.delete_file(file_id)
    except CodedropError as e:
        raise _http_error(e)
    if not deleted:
        raise HTTPException(status_code=404, detail=NOT_FOUND_DETAIL)
    return {"deleted": True, "id": file_id}
