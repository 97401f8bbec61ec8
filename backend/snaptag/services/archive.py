"""ZIP archives of owned files, streamed as they are built.

Ids that do not resolve to a record of the requesting user are left out
silently; only when none resolve does the request fail, and that check runs
before any byte is sent. Files are then downloaded one at a time and each
compressed entry is handed out as soon as it is written, so memory holds
about one file. A download failure for one file is noted in a
``download-errors.txt`` manifest at the end of the archive, since the archive
is the only thing the client receives.
"""
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import date
from typing import AsyncIterator, Optional, Sequence

from snaptag.models.file_record import FileRecord
from snaptag.services.bulk_service import BulkOperation, check_batch_size
from snaptag.services.errors import ValidationError, safe_error_message
from snaptag.services.file_repository import FileRecordStore
from snaptag.services.file_storage import StorageAdapter
from snaptag.services.parallel_engine import run_parallel

logger = logging.getLogger(__name__)

COMPRESSION_LEVEL = 9
MANIFEST_NAME = "download-errors.txt"


def split_extension(filename: str) -> tuple[str, str]:
    """'photo.jpg' -> ('photo', '.jpg'). A leading dot is not an extension."""
    index = filename.rfind(".")
    if index > 0:
        return filename[:index], filename[index:]
    return filename, ""


def unique_name(filename: str, used: set[str]) -> str:
    """Return filename, or name-1.ext, name-2.ext, ... whichever is unused first."""
    if filename not in used:
        return filename
    stem, ext = split_extension(filename)
    counter = 1
    while f"{stem}-{counter}{ext}" in used:
        counter += 1
    return f"{stem}-{counter}{ext}"


def flatten_name(filename: str) -> str:
    """Archive entries live in a flat namespace."""
    flat = (filename or "").replace("/", "_").replace("\\", "_").strip()
    return flat or "unnamed"


@dataclass
class ArchiveError:
    id: str
    filename: str
    error: str


def build_manifest(included_count: int, errors: Sequence[ArchiveError]) -> str:
    lines = [
        "Download Summary:",
        "",
        f"Successful: {included_count} files",
        f"Failed: {len(errors)} files",
        "",
        "Errors:",
    ]
    lines.extend(f"- {e.filename} ({e.id}): {e.error}" for e in errors)
    return "\n".join(lines) + "\n"


class _DrainBuffer:
    """Write-only sink for ZipFile. No tell(), so zipfile writes in streaming mode."""

    def __init__(self):
        self._parts: list[bytes] = []

    def write(self, data) -> int:
        self._parts.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._parts)
        self._parts.clear()
        return data


@dataclass
class ArchiveStream:
    """A resolved archive request. Iterate ``chunks()`` to produce the ZIP.

    ``included`` and ``errors`` fill in while the archive is being streamed.
    """
    filename: str
    records: list[FileRecord]
    storage: StorageAdapter
    included: list[str] = field(default_factory=list)
    errors: list[ArchiveError] = field(default_factory=list)

    async def chunks(self) -> AsyncIterator[bytes]:
        sink = _DrainBuffer()
        used: set[str] = set()

        with zipfile.ZipFile(sink, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESSION_LEVEL) as archive:
            for record in self.records:
                try:
                    data = await self.storage.download(record.file_path)
                except Exception as e:
                    logger.warning("Archive download failed for %s: %s", record.id, e)
                    self.errors.append(ArchiveError(
                        id=str(record.id), filename=record.filename,
                        error=safe_error_message(e, "Download failed"),
                    ))
                    continue

                entry_name = unique_name(flatten_name(record.filename), used)
                used.add(entry_name)
                archive.writestr(entry_name, data)
                self.included.append(entry_name)
                del data

                chunk = sink.drain()
                if chunk:
                    yield chunk

            if self.errors:
                manifest_name = unique_name(MANIFEST_NAME, used)
                used.add(manifest_name)
                archive.writestr(manifest_name, build_manifest(len(self.included), self.errors))

        # Central directory is written on close
        chunk = sink.drain()
        if chunk:
            yield chunk

        logger.info(
            "Archive %s: %d included, %d failed",
            self.filename, len(self.included), len(self.errors),
        )

    async def read(self) -> bytes:
        """Whole archive in memory. Meant for small archives and tests."""
        return b"".join([chunk async for chunk in self.chunks()])


class ArchiveAssembler:
    """Resolves owned files and streams them into one compressed ZIP."""

    def __init__(self, storage: StorageAdapter, store: FileRecordStore):
        self.storage = storage
        self.store = store

    async def build_archive(self, file_ids: Sequence[str], user_id: str, today: Optional[date] = None) -> ArchiveStream:
        check_batch_size(BulkOperation.DOWNLOAD, len(file_ids))
        unique_ids = list(dict.fromkeys(str(i) for i in file_ids))

        async def resolve(index: int, file_id: str) -> Optional[FileRecord]:
            return await self.store.find_by_id(file_id, user_id)

        resolved = await run_parallel(unique_ids, resolve)
        records = [r for r in resolved if isinstance(r, FileRecord)]
        for file_id, r in zip(unique_ids, resolved):
            if isinstance(r, Exception):
                logger.warning("Ownership lookup failed for %s: %s", file_id, r)

        if not records:
            raise ValidationError("No valid files found to download")

        logger.info(
            "Archive for user %s: %d files, %d ids not found",
            user_id, len(records), len(unique_ids) - len(records),
        )
        stamp = (today or date.today()).isoformat()
        return ArchiveStream(filename=f"files-{stamp}.zip", records=records, storage=self.storage)
