"""Download authorization.

Each attempt walks: lookup -> expiry -> password -> quota -> grant/reject.
A grant consumes exactly one unit of quota; a reject mutates nothing.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Union

from codedrop.services.codes import is_valid_code, normalize_code
from codedrop.services.passwords import verify_password_async
from codedrop.services.record_store import FileRecordStore

logger = logging.getLogger(__name__)


class RejectReason(str, Enum):
    NOT_FOUND = "not_found"
    WRONG_PASSWORD = "wrong_password"
    QUOTA_EXCEEDED = "quota_exceeded"


@dataclass(frozen=True)
class Grant:
    file_id: str
    blob_ref: str
    original_name: str
    mime_type: str
    size: int


@dataclass(frozen=True)
class Reject:
    reason: RejectReason


Decision = Union[Grant, Reject]


class AccessGate:
    def __init__(self, store: FileRecordStore, clock: Callable[[], datetime]):
        self.store = store
        self.clock = clock

    async def authorize_download(self, code: str, supplied_password: Optional[str] = None) -> Decision:
        code = normalize_code(code)
        if not is_valid_code(code):
            return Reject(RejectReason.NOT_FOUND)

        # Expired records are filtered by the store: same answer as unknown codes
        record = await self.store.get_by_code(code, self.clock())
        if record is None:
            logger.debug(f"Download rejected for {code}: not found")
            return Reject(RejectReason.NOT_FOUND)

        if record.password_hash is not None:
            # A missing password is treated exactly like a wrong one
            if not supplied_password or not await verify_password_async(supplied_password, record.password_hash):
                logger.debug(f"Download rejected for {code}: wrong password")
                return Reject(RejectReason.WRONG_PASSWORD)

        if record.is_exhausted:
            logger.debug(f"Download rejected for {code}: quota exceeded")
            return Reject(RejectReason.QUOTA_EXCEEDED)

        now = self.clock()
        if not await self.store.consume_download(record.id, now):
            # Lost a race: either another download took the last slot or the record went away
            if await self.store.get_by_id(record.id, now) is None:
                return Reject(RejectReason.NOT_FOUND)
            logger.debug(f"Download rejected for {code}: quota exceeded (concurrent)")
            return Reject(RejectReason.QUOTA_EXCEEDED)

        logger.info(f"Download granted for file {record.id} (code {code})")
        return Grant(
            file_id=record.id,
            blob_ref=record.blob_ref,
            original_name=record.original_name,
            mime_type=record.mime_type,
            size=record.size,
        )
