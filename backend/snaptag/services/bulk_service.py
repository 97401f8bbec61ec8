"""Bulk operations with partial-failure semantics.

Every bulk operation fans its items out concurrently (the batch cap is the
concurrency bound), catches each item's error at the item boundary and
reports per-item results in input order. The aggregate is classified three
ways: all succeeded, none succeeded, or partial success.
"""
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from snaptag.models.file_record import FileRecord
from snaptag.schemas.file import FilePatch
from snaptag.services.audit import audit
from snaptag.services.errors import NotFoundError, ValidationError, safe_error_message
from snaptag.services.file_repository import FileRecordStore
from snaptag.services.file_storage import StorageAdapter
from snaptag.services.image_analysis import DEFAULT_TAG_STYLE
from snaptag.services.parallel_engine import run_parallel
from snaptag.services.upload_service import UploadOptions, UploadOrchestrator, UploadResult

logger = logging.getLogger(__name__)


class BulkOperation(str, enum.Enum):
    UPLOAD = "upload"
    REGENERATE = "regenerate"
    UPDATE = "update"
    DELETE = "delete"
    DOWNLOAD = "download"


# Each item may hit the network, so batches are capped per operation
BATCH_LIMITS = {
    BulkOperation.UPLOAD: 10,
    BulkOperation.REGENERATE: 20,
    BulkOperation.UPDATE: 50,
    BulkOperation.DELETE: 100,
    BulkOperation.DOWNLOAD: 100,
}

# HTTP status for a batch where nothing succeeded
FAILURE_STATUS_CODES = {
    BulkOperation.UPLOAD: 500,
    BulkOperation.REGENERATE: 400,
    BulkOperation.UPDATE: 400,
    BulkOperation.DELETE: 400,
    BulkOperation.DOWNLOAD: 400,
}


class BulkStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


def classify(succeeded: int, requested: int) -> BulkStatus:
    if requested > 0 and succeeded == requested:
        return BulkStatus.SUCCESS
    if succeeded == 0:
        return BulkStatus.FAILURE
    return BulkStatus.PARTIAL


def check_batch_size(operation: BulkOperation, count: int) -> None:
    if count == 0:
        raise ValidationError("Invalid or empty batch")
    limit = BATCH_LIMITS[operation]
    if count > limit:
        raise ValidationError(
            f"Maximum {limit} files allowed per {operation.value} request",
            {"limit": limit, "requested": count},
        )


@dataclass
class UploadItem:
    filename: str
    content: bytes
    content_type: Optional[str] = None


@dataclass
class BulkItemResult:
    key: Optional[str]
    success: bool
    value: Any = None
    error: Optional[str] = None


@dataclass
class BulkOutcome:
    operation: BulkOperation
    items: list[BulkItemResult] = field(default_factory=list)
    processing_time_seconds: float = 0.0

    @property
    def requested(self) -> int:
        return len(self.items)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed(self) -> int:
        return self.requested - self.succeeded

    @property
    def status(self) -> BulkStatus:
        return classify(self.succeeded, self.requested)

    @property
    def status_code(self) -> int:
        if self.status is BulkStatus.SUCCESS:
            return 200
        if self.status is BulkStatus.PARTIAL:
            return 207
        return FAILURE_STATUS_CODES[self.operation]

    def successes(self) -> list[BulkItemResult]:
        return [item for item in self.items if item.success]

    def failures(self) -> list[BulkItemResult]:
        return [item for item in self.items if not item.success]


def _collect(items: Sequence[Any], results: Sequence[Any], key: Callable[[Any], Optional[str]]) -> list[BulkItemResult]:
    collected = []
    for item, result in zip(items, results):
        if isinstance(result, Exception):
            collected.append(BulkItemResult(key=key(item), success=False, error=safe_error_message(result)))
        else:
            collected.append(BulkItemResult(key=key(item), success=True, value=result))
    return collected


def _item_id(item: Any) -> Optional[str]:
    if isinstance(item, dict):
        value = item.get("id")
        return str(value) if value is not None else None
    return str(item) if item is not None else None


class BulkOrchestrator:
    """Runs batches of independent single-file operations."""

    def __init__(self, uploads: UploadOrchestrator, store: FileRecordStore, storage: StorageAdapter):
        self.uploads = uploads
        self.store = store
        self.storage = storage

    async def _run(
        self,
        operation: BulkOperation,
        items: Sequence[Any],
        worker: Callable[[Any], Awaitable[Any]],
        key: Callable[[Any], Optional[str]],
        user_id: str,
    ) -> BulkOutcome:
        check_batch_size(operation, len(items))
        start = time.monotonic()

        async def _work(index: int, item: Any):
            try:
                return await worker(item)
            except Exception as e:
                logger.error("bulk %s item %d (%s) failed: %s", operation.value, index, key(item), e)
                raise

        results = await run_parallel(items, _work)
        outcome = BulkOutcome(
            operation=operation,
            items=_collect(items, results, key),
            processing_time_seconds=round(time.monotonic() - start, 2),
        )
        logger.info(
            "bulk %s for user %s: %d/%d succeeded in %.2fs",
            operation.value, user_id, outcome.succeeded, outcome.requested, outcome.processing_time_seconds,
        )
        return outcome

    async def upload_many(
        self, files: Sequence[UploadItem], user_id: str, tag_style: str = DEFAULT_TAG_STYLE,
    ) -> BulkOutcome:
        """Upload and analyze each file. Item value is the UploadResult.

        An analysis failure does not fail the item: the record exists with
        status ``failed`` and the analysis outcome carries the reason.
        """
        options = UploadOptions(tag_style=tag_style, analyze_with_ai=True)

        async def worker(item: UploadItem) -> UploadResult:
            return await self.uploads.upload_and_process(
                item.content, item.filename, user_id,
                content_type=item.content_type, options=options,
            )

        return await self._run(BulkOperation.UPLOAD, files, worker, lambda f: f.filename, user_id)

    async def regenerate_many(
        self, file_ids: Sequence[str], user_id: str, tag_style: str = DEFAULT_TAG_STYLE,
    ) -> BulkOutcome:
        async def worker(file_id: str) -> FileRecord:
            result = await self.uploads.analyze_existing_file(file_id, user_id, tag_style)
            return result.record

        return await self._run(BulkOperation.REGENERATE, file_ids, worker, _item_id, user_id)

    async def update_many(self, updates: Sequence[dict], user_id: str) -> BulkOutcome:
        """Apply one FilePatch per entry; entries look like {"id": ..., <patch fields>}."""
        async def worker(entry: dict) -> FileRecord:
            if not isinstance(entry, dict) or not entry.get("id"):
                raise ValidationError("File ID is required")
            fields = {k: v for k, v in entry.items() if k != "id"}
            try:
                patch = FilePatch.model_validate(fields)
            except PydanticValidationError as e:
                raise ValidationError("; ".join(err["msg"] for err in e.errors())) from e
            return await self.uploads.update_metadata(entry["id"], user_id, patch)

        return await self._run(BulkOperation.UPDATE, updates, worker, _item_id, user_id)

    async def delete_many(self, file_ids: Sequence[str], user_id: str) -> BulkOutcome:
        """Delete owned files.

        Ownership is resolved per item; unresolved ids become failure entries.
        Storage objects of resolved records go in one batch delete whose
        failure is logged but never blocks the record deletes.
        """
        check_batch_size(BulkOperation.DELETE, len(file_ids))
        start = time.monotonic()

        async def resolve(index: int, file_id: str) -> FileRecord:
            record = await self.store.find_by_id(file_id, user_id)
            if record is None:
                raise NotFoundError()
            return record

        resolved = await run_parallel(file_ids, resolve)
        paths = [r.file_path for r in resolved if isinstance(r, FileRecord)]

        if paths:
            try:
                await self.storage.delete_many(paths)
            except Exception as e:
                logger.warning("Bulk storage delete failed for user %s, leaving orphans: %s", user_id, e)

        async def remove(index: int, file_id: str) -> FileRecord:
            record = resolved[index]
            if isinstance(record, Exception):
                raise record
            if not await self.store.delete(record.id, user_id):
                raise NotFoundError()
            return record

        results = await run_parallel(file_ids, remove)
        outcome = BulkOutcome(
            operation=BulkOperation.DELETE,
            items=_collect(file_ids, results, _item_id),
            processing_time_seconds=round(time.monotonic() - start, 2),
        )
        audit("bulk_delete", user_id, count=outcome.succeeded, requested=outcome.requested)
        return outcome
