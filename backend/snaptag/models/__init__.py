"""Import all models so SQLAlchemy metadata knows about them."""
from snaptag.models.base import Base
from snaptag.models.file_record import FileRecord, FileStatus

__all__ = ["Base", "FileRecord", "FileStatus"]
