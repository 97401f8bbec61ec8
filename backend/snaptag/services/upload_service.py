"""Single-file upload pipeline.

Drives one image through validate -> store -> create record -> (optional)
analyze -> finalize status. The record is only created after the storage
write succeeded, so a record never points at a missing object. A record
creation failure after a successful upload is surfaced to the caller and may
leave a storage orphan; the record is the source of truth for visibility.
"""
import logging
import mimetypes
import re
import secrets
import time
from dataclasses import dataclass
from typing import Optional

from snaptag.models.file_record import FileRecord, FileStatus
from snaptag.schemas.file import FilePatch
from snaptag.services.audit import audit, security
from snaptag.services.errors import (
    ExternalServiceError, NotFoundError, ValidationError, safe_error_message,
)
from snaptag.services.file_repository import FileRecordStore
from snaptag.services.file_storage import StorageAdapter
from snaptag.services.image_analysis import (
    DEFAULT_TAG_STYLE, AnalysisResult, ImageAnalyzer, normalize_tags, resolve_tag_style,
)

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp")
MAX_FILE_SIZE_MB = 10
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_filename(filename: str) -> str:
    """Strip any directory part and replace unsafe characters with '_'."""
    basename = re.sub(r"^.*[\\/]", "", filename or "")
    return _UNSAFE_FILENAME_CHARS.sub("_", basename)


def get_extension(filename: str) -> str:
    sanitized = sanitize_filename(filename)
    if "." not in sanitized:
        return ""
    return sanitized.rsplit(".", 1)[-1].lower()


def validate_user_id(user_id: str) -> str:
    """The user id becomes a storage path segment, so it must be one segment."""
    if not user_id or not user_id.strip() or user_id in (".", "..") or re.search(r"[\\/]", user_id):
        raise ValidationError("Invalid user id")
    return user_id


def generate_storage_path(user_id: str, extension: str) -> str:
    """images/{user_id}/{timestamp}-{random}.{ext} with a CSPRNG random part."""
    timestamp = int(time.time() * 1000)
    return f"images/{validate_user_id(user_id)}/{timestamp}-{secrets.token_hex(8)}.{extension}"


def resolve_mime_type(content_type: Optional[str], extension: str) -> str:
    """Trust the declared type only when it is an image type."""
    if content_type and content_type.lower().startswith("image/"):
        return content_type.lower()
    guessed, _ = mimetypes.guess_type(f"file.{extension}")
    return guessed or "application/octet-stream"


@dataclass
class UploadOptions:
    tag_style: str = DEFAULT_TAG_STYLE
    analyze_with_ai: bool = True


@dataclass
class UploadResult:
    """Final record state plus the raw analysis outcome (None when skipped)."""
    record: FileRecord
    analysis: Optional[AnalysisResult] = None


class UploadOrchestrator:
    """Single-file operations over storage, AI analysis and the record store.

    Dependencies are passed in explicitly; nothing is looked up globally.
    """

    def __init__(self, storage: StorageAdapter, analyzer: ImageAnalyzer, store: FileRecordStore):
        self.storage = storage
        self.analyzer = analyzer
        self.store = store

    def validate_upload(self, filename: str, size: int, user_id: str) -> str:
        """Check extension and size. Returns the normalized extension."""
        validate_user_id(user_id)
        if not filename:
            raise ValidationError("No image file provided")

        extension = get_extension(filename)
        if extension not in ALLOWED_EXTENSIONS:
            security("invalid_file_extension", user_id, extension=extension)
            raise ValidationError(
                "Invalid file extension",
                {"extension": extension, "allowed": list(ALLOWED_EXTENSIONS)},
            )

        if size <= 0:
            raise ValidationError("File is empty")
        if size > MAX_FILE_SIZE_BYTES:
            security("file_too_large", user_id, size=size)
            raise ValidationError("File size exceeds limit", {"maxSize": f"{MAX_FILE_SIZE_MB}MB"})

        return extension

    async def upload_and_process(
        self,
        content: bytes,
        filename: str,
        user_id: str,
        content_type: Optional[str] = None,
        options: Optional[UploadOptions] = None,
    ) -> UploadResult:
        options = options or UploadOptions()
        extension = self.validate_upload(filename, len(content), user_id)

        path = generate_storage_path(user_id, extension)
        mime_type = resolve_mime_type(content_type, extension)
        original_name = filename.strip()

        audit("file_upload_attempt", user_id, path=path, size=len(content), mime_type=mime_type)

        try:
            public_url = await self.storage.upload(content, path, mime_type)
        except Exception as e:
            logger.error("Storage upload failed for %s: %s", path, e)
            raise ExternalServiceError("Storage", safe_error_message(e, "Upload failed")) from e

        will_analyze = options.analyze_with_ai and mime_type.startswith("image/")
        try:
            record = await self.store.create(
                user_id=user_id,
                filename=original_name,
                file_path=path,
                file_size=len(content),
                mime_type=mime_type,
                public_url=public_url,
                status=(FileStatus.PROCESSING if will_analyze else FileStatus.UPLOADED).value,
                tags=[],
            )
        except Exception:
            logger.error("Record creation failed after storage upload, orphaned object at %s", path)
            raise

        audit("file_upload_success", user_id, file_id=str(record.id), path=path, size=len(content))

        if not will_analyze:
            return UploadResult(record=record)

        analysis = await self._analyze(record.public_url, options.tag_style)
        record = await self._finalize_analysis(record, user_id, analysis)
        return UploadResult(record=record, analysis=analysis)

    async def analyze_existing_file(
        self, file_id, user_id: str, tag_style: str = DEFAULT_TAG_STYLE,
    ) -> UploadResult:
        """Re-run analysis on a stored image.

        The URL is refreshed first since a stored signed URL may have expired.
        On AI failure the record is left ``failed`` and a retryable
        ExternalServiceError is raised.
        """
        record = await self.get_file(file_id, user_id)
        if not record.is_image:
            raise ValidationError("File is not an image")

        audit("ai_analysis_requested", user_id, file_id=str(record.id))

        try:
            fresh_url = await self._fresh_url(record.file_path)
        except ExternalServiceError:
            await self._mark_failed(record, user_id)
            raise
        record = await self.store.update(
            record.id, user_id, public_url=fresh_url, status=FileStatus.PROCESSING.value,
        )

        analysis = await self._analyze(fresh_url, tag_style)
        record = await self._finalize_analysis(record, user_id, analysis)

        if not analysis.success:
            raise ExternalServiceError(
                "AI", analysis.error or "Analysis failed",
                {"fileId": str(record.id), "retryable": True},
            )

        audit("ai_analysis_success", user_id, file_id=str(record.id))
        return UploadResult(record=record, analysis=analysis)

    async def refresh_file_url(self, file_id, user_id: str) -> FileRecord:
        record = await self.get_file(file_id, user_id)
        fresh_url = await self._fresh_url(record.file_path)
        return await self.store.update(record.id, user_id, public_url=fresh_url)

    async def get_file(self, file_id, user_id: str) -> FileRecord:
        record = await self.store.find_by_id(file_id, user_id)
        if record is None:
            raise NotFoundError()
        return record

    async def update_metadata(self, file_id, user_id: str, patch: FilePatch) -> FileRecord:
        if patch.is_empty():
            raise ValidationError("No updates provided")
        record = await self.get_file(file_id, user_id)
        return await self.store.update(record.id, user_id, **patch.to_fields())

    async def delete_file(self, file_id, user_id: str) -> FileRecord:
        """Remove the storage object and the record.

        The record delete is authoritative: a storage failure is logged and
        leaves an orphaned object rather than an inaccessible record.
        """
        record = await self.get_file(file_id, user_id)

        try:
            await self.storage.delete(record.file_path)
        except Exception as e:
            logger.warning("Storage delete failed for %s, leaving orphan: %s", record.file_path, e)

        if not await self.store.delete(record.id, user_id):
            raise NotFoundError()

        audit("file_deleted", user_id, file_id=str(record.id), filename=record.filename)
        return record

    async def _fresh_url(self, path: str) -> str:
        try:
            return await self.storage.get_url(path)
        except Exception as e:
            raise ExternalServiceError("Storage", safe_error_message(e, "Could not build URL")) from e

    async def _analyze(self, image_url: Optional[str], tag_style: str) -> AnalysisResult:
        style = resolve_tag_style(tag_style)
        try:
            return await self.analyzer.analyze(image_url or "", style)
        except Exception as e:
            logger.error("Image analyzer raised for %s: %s", image_url, e)
            return AnalysisResult.failure(safe_error_message(e, "Image analysis failed"), tag_style=style)

    async def _finalize_analysis(self, record: FileRecord, user_id: str, analysis: AnalysisResult) -> FileRecord:
        """Persist the analysis outcome. Tags are normalized whatever the adapter returned."""
        if not analysis.success:
            logger.error("AI analysis failed for file %s: %s", record.id, analysis.error)
            return await self.store.update(record.id, user_id, status=FileStatus.FAILED.value)

        try:
            return await self.store.update(
                record.id, user_id,
                description=(analysis.description or "").strip() or None,
                tags=normalize_tags(analysis.tags or []),
                status=FileStatus.COMPLETED.value,
            )
        except Exception:
            logger.error("Saving analysis failed for file %s", record.id)
            await self._mark_failed(record, user_id)
            raise

    async def _mark_failed(self, record: FileRecord, user_id: str) -> None:
        """Best effort: a record must not stay in 'processing' after an error."""
        try:
            await self.store.update(record.id, user_id, status=FileStatus.FAILED.value)
        except Exception as e:
            logger.error("Could not mark file %s as failed: %s", record.id, e)
