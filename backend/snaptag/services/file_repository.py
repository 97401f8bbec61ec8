"""File record persistence.

``FileRecordStore`` is the contract; ``SqlFileRecordStore`` implements it on
the async SQLAlchemy session factory. Every call is scoped by user_id and
opens its own session, so concurrent bulk workers can share one store.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from snaptag.models.file_record import FileRecord
from snaptag.services.errors import NotFoundError

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"filename", "description", "tags", "status", "public_url"})
SORTABLE_FIELDS = frozenset({"created_at", "updated_at", "filename", "file_size", "status"})


def coerce_file_id(file_id: Any) -> Optional[uuid.UUID]:
    """Parse a record id. Malformed ids resolve to no record instead of erroring."""
    if isinstance(file_id, uuid.UUID):
        return file_id
    try:
        return uuid.UUID(str(file_id))
    except (TypeError, ValueError):
        return None


class FileRecordStore(ABC):
    """CRUD over file metadata records, scoped by owner."""

    @abstractmethod
    async def create(self, **fields) -> FileRecord:
        pass

    @abstractmethod
    async def find_by_id(self, file_id, user_id: str) -> Optional[FileRecord]:
        pass

    @abstractmethod
    async def find_by_owner(
        self, user_id: str, *, status: Optional[str] = None,
        sort_by: str = "created_at", sort_order: str = "desc",
        limit: Optional[int] = None, offset: int = 0,
    ) -> tuple[list[FileRecord], int]:
        pass

    @abstractmethod
    async def update(self, file_id, user_id: str, **fields) -> FileRecord:
        pass

    @abstractmethod
    async def delete(self, file_id, user_id: str) -> bool:
        pass

    @abstractmethod
    async def search(self, user_id: str, query: str, *, mime_type_prefix: Optional[str] = None) -> list[FileRecord]:
        pass


class SqlFileRecordStore(FileRecordStore):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, **fields) -> FileRecord:
        record = FileRecord(**fields)
        async with self._session_factory() as db:
            db.add(record)
            await db.commit()
            await db.refresh(record)
        return record

    async def find_by_id(self, file_id, user_id: str) -> Optional[FileRecord]:
        record_id = coerce_file_id(file_id)
        if record_id is None:
            return None
        async with self._session_factory() as db:
            result = await db.execute(
                select(FileRecord).where(FileRecord.id == record_id, FileRecord.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def find_by_owner(
        self, user_id: str, *, status: Optional[str] = None,
        sort_by: str = "created_at", sort_order: str = "desc",
        limit: Optional[int] = None, offset: int = 0,
    ) -> tuple[list[FileRecord], int]:
        conditions = [FileRecord.user_id == user_id]
        if status:
            conditions.append(FileRecord.status == status)

        column = getattr(FileRecord, sort_by if sort_by in SORTABLE_FIELDS else "created_at")
        ordering = column.asc() if sort_order.lower() == "asc" else column.desc()

        query = select(FileRecord).where(*conditions).order_by(ordering, FileRecord.id)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        async with self._session_factory() as db:
            total = await db.scalar(select(func.count()).select_from(FileRecord).where(*conditions))
            result = await db.execute(query)
            return list(result.scalars().all()), total or 0

    async def update(self, file_id, user_id: str, **fields) -> FileRecord:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        record_id = coerce_file_id(file_id)
        if record_id is None:
            raise NotFoundError()
        async with self._session_factory() as db:
            result = await db.execute(
                select(FileRecord).where(FileRecord.id == record_id, FileRecord.user_id == user_id)
            )
            record = result.scalar_one_or_none()
            if not record:
                raise NotFoundError()

            for key, value in fields.items():
                setattr(record, key, value)

            await db.commit()
            await db.refresh(record)
            return record

    async def delete(self, file_id, user_id: str) -> bool:
        record_id = coerce_file_id(file_id)
        if record_id is None:
            return False
        async with self._session_factory() as db:
            result = await db.execute(
                select(FileRecord).where(FileRecord.id == record_id, FileRecord.user_id == user_id)
            )
            record = result.scalar_one_or_none()
            if not record:
                return False
            await db.delete(record)
            await db.commit()
            return True

    async def search(self, user_id: str, query: str, *, mime_type_prefix: Optional[str] = None) -> list[FileRecord]:
        conditions = [FileRecord.user_id == user_id]
        if mime_type_prefix:
            conditions.append(FileRecord.mime_type.startswith(mime_type_prefix, autoescape=True))

        async with self._session_factory() as db:
            result = await db.execute(
                select(FileRecord).where(*conditions).order_by(FileRecord.created_at.desc(), FileRecord.id)
            )
            records = result.scalars().all()

        # Tags are a JSON list, so matching happens here rather than in SQL
        needle = query.strip().lower()
        if not needle:
            return list(records)
        return [
            r for r in records
            if needle in (r.filename or "").lower()
            or needle in (r.description or "").lower()
            or any(needle in tag.lower() for tag in (r.tags or []))
        ]
