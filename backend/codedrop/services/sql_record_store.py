"""SQLAlchemy-backed file record store.

Code uniqueness comes from the unique index on files.code; quota checks use a
single conditional UPDATE so concurrent downloads serialise in the database.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, desc, or_, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from codedrop.models.file_record import CODE_CONSTRAINT, FileRecord
from codedrop.services.blob_storage import BlobStorage
from codedrop.services.errors import StorageUnavailable
from codedrop.services.expiration import ExpirationClass
from codedrop.services.record_store import CodeCollision, FileRecordStore
from codedrop.services.records import SharedFile

logger = logging.getLogger(__name__)


def _utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_id(record_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(record_id))
    except ValueError:
        return None


def _is_code_collision(error: IntegrityError) -> bool:
    """True only for a violation of the files.code unique constraint.

    PostgreSQL reports the constraint name, SQLite reports the column.
    """
    message = str(error.orig)
    return CODE_CONSTRAINT in message or "UNIQUE constraint failed: files.code" in message


def _to_shared(row: FileRecord) -> SharedFile:
    return SharedFile(
        id=str(row.id),
        code=row.code,
        original_name=row.original_name,
        mime_type=row.mime_type,
        size=row.size_bytes,
        blob_ref=row.blob_ref,
        expiration_class=ExpirationClass(row.expiration_type),
        expires_at=_utc(row.expires_at),
        created_at=_utc(row.created_at),
        download_count=row.download_count,
        password_hash=row.password_hash,
        max_downloads=row.max_downloads,
        custom_message=row.custom_message,
        owner_id=row.user_id,
    )


class SqlFileRecordStore(FileRecordStore):

    backend_name = "database"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], blob_storage: BlobStorage, **kwargs):
        super().__init__(blob_storage, **kwargs)
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self.session_factory() as db:
                yield db
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Record store error: {e}")
            raise StorageUnavailable(f"Record store unavailable: {e}") from e

    async def _insert(self, record: SharedFile) -> None:
        row = FileRecord(
            id=uuid.UUID(record.id),
            code=record.code,
            original_name=record.original_name,
            mime_type=record.mime_type,
            size_bytes=record.size,
            blob_ref=record.blob_ref,
            password_hash=record.password_hash,
            max_downloads=record.max_downloads,
            download_count=0,
            expiration_type=record.expiration_class.value,
            custom_message=record.custom_message,
            user_id=record.owner_id,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )
        async with self._session() as db:
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                if _is_code_collision(e):
                    raise CodeCollision(record.code) from e
                raise StorageUnavailable(f"Could not insert file record: {e}") from e

    async def _get_any(self, record_id: str) -> Optional[SharedFile]:
        uid = _parse_id(record_id)
        if uid is None:
            return None
        async with self._session() as db:
            row = await db.get(FileRecord, uid)
            return _to_shared(row) if row else None

    async def _remove(self, record_id: str) -> bool:
        uid = _parse_id(record_id)
        if uid is None:
            return False
        async with self._session() as db:
            result = await db.execute(
                delete(FileRecord)
                .where(FileRecord.id == uid)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    async def _fetch(self, query) -> list[SharedFile]:
        async with self._session() as db:
            result = await db.execute(query)
            return [_to_shared(row) for row in result.scalars().all()]

    async def _fetch_one(self, query) -> Optional[SharedFile]:
        async with self._session() as db:
            result = await db.execute(query)
            row = result.scalar_one_or_none()
            return _to_shared(row) if row else None

    async def get_by_code(self, code: str, now: datetime) -> Optional[SharedFile]:
        return await self._fetch_one(
            select(FileRecord).where(FileRecord.code == code, FileRecord.expires_at > now)
        )

    async def get_by_id(self, record_id: str, now: datetime) -> Optional[SharedFile]:
        uid = _parse_id(record_id)
        if uid is None:
            return None
        return await self._fetch_one(
            select(FileRecord).where(FileRecord.id == uid, FileRecord.expires_at > now)
        )

    async def list_active(self, now: datetime) -> list[SharedFile]:
        return await self._fetch(
            select(FileRecord)
            .where(FileRecord.expires_at > now)
            .order_by(desc(FileRecord.created_at))
        )

    async def list_by_owner(self, owner_id: str, now: datetime) -> list[SharedFile]:
        return await self._fetch(
            select(FileRecord)
            .where(FileRecord.user_id == owner_id, FileRecord.expires_at > now)
            .order_by(desc(FileRecord.created_at))
        )

    async def list_expired(self, now: datetime) -> list[SharedFile]:
        return await self._fetch(select(FileRecord).where(FileRecord.expires_at <= now))

    async def list_exhausted(self, now: datetime) -> list[SharedFile]:
        return await self._fetch(
            select(FileRecord).where(
                FileRecord.expires_at > now,
                FileRecord.max_downloads.is_not(None),
                FileRecord.download_count >= FileRecord.max_downloads,
            )
        )

    async def consume_download(self, record_id: str, now: datetime) -> bool:
        uid = _parse_id(record_id)
        if uid is None:
            return False
        async with self._session() as db:
            result = await db.execute(
                update(FileRecord)
                .where(
                    FileRecord.id == uid,
                    FileRecord.expires_at > now,
                    or_(
                        FileRecord.max_downloads.is_(None),
                        FileRecord.download_count < FileRecord.max_downloads,
                    ),
                )
                .values(download_count=FileRecord.download_count + 1)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return result.rowcount == 1

    async def ping(self) -> None:
        async with self._session() as db:
            await db.execute(text("SELECT 1"))
