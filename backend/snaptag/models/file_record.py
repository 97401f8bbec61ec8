"""FileRecord model - image metadata (actual bytes live in blob storage)."""
import enum
from typing import Optional

from sqlalchemy import JSON, BigInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from snaptag.models.base import Base, TimestampMixin, UserMixin, UUIDPrimaryKeyMixin


class FileStatus(str, enum.Enum):
    """Lifecycle of a file record.

    uploaded -> processing -> completed | failed. ``uploaded`` is terminal when
    no analysis was requested; ``failed`` can go back through ``processing``
    when analysis is requested again.
    """
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FileRecord(Base, UUIDPrimaryKeyMixin, TimestampMixin, UserMixin):
    __tablename__ = "uploaded_files"

    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    public_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=FileStatus.UPLOADED.value)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    @property
    def is_image(self) -> bool:
        return bool(self.mime_type and self.mime_type.startswith("image/"))

    @property
    def has_ai_analysis(self) -> bool:
        return bool(self.description) or bool(self.tags)

    @property
    def file_size_mb(self) -> Optional[float]:
        if not self.file_size:
            return None
        return round(self.file_size / (1024 * 1024), 2)
