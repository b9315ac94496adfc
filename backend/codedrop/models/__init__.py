"""Import all models so SQLAlchemy metadata knows about them."""
from codedrop.models.base import Base
from codedrop.models.file_record import FileRecord
from codedrop.models.account import Account

__all__ = ["Base", "FileRecord", "Account"]
