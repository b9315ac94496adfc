"""FileRecord model - shared file metadata (actual bytes live in blob storage)."""
import uuid
from datetime import datetime
from sqlalchemy import String, Text, BigInteger, Integer, DateTime, Uuid, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from codedrop.models.base import Base, CreatedAtMixin, OwnerMixin

CODE_CONSTRAINT = "uq_files_code"


class FileRecord(Base, CreatedAtMixin, OwnerMixin):
    __tablename__ = "files"
    __table_args__ = (
        UniqueConstraint("code", name=CODE_CONSTRAINT),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    blob_ref: Mapped[str] = mapped_column(String(1000), nullable=False)
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    max_downloads: Mapped[int | None] = mapped_column(Integer, nullable=True)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expiration_type: Mapped[str] = mapped_column(String(20), nullable=False, default="24h")
    custom_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
