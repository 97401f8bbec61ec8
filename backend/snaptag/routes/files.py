"""Files API routes."""
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response, StreamingResponse

from snaptag.dependencies import (
    get_archive_assembler, get_bulk_service, get_current_user_id, get_file_store,
    get_storage, get_upload_service,
)
from snaptag.schemas.common import bulk_response, file_to_response
from snaptag.schemas.file import (
    BulkIdsRequest, BulkRegenerateRequest, BulkUpdateRequest, FilePatch, TagStyleRequest,
)
from snaptag.services.archive import ArchiveAssembler
from snaptag.services.bulk_service import BulkOrchestrator
from snaptag.services.errors import ExternalServiceError, ValidationError, safe_error_message
from snaptag.services.file_repository import FileRecordStore
from snaptag.services.file_stats import summarize_files
from snaptag.services.file_storage import StorageAdapter
from snaptag.services.image_analysis import DEFAULT_TAG_STYLE
from snaptag.services.upload_service import UploadOrchestrator

router = APIRouter(prefix="/api/files", tags=["files"])


@router.get("")
async def list_files(
    status: Optional[str] = Query(None),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    store: FileRecordStore = Depends(get_file_store),
):
    """List the caller's files."""
    records, total = await store.find_by_owner(
        user_id, status=status, sort_by=sort_by, sort_order=sort_order,
        limit=limit, offset=offset,
    )
    return {
        "success": True,
        "data": [file_to_response(r) for r in records],
        "total": total,
    }


@router.get("/stats")
async def get_stats(
    user_id: str = Depends(get_current_user_id),
    store: FileRecordStore = Depends(get_file_store),
):
    records, _ = await store.find_by_owner(user_id)
    stats = summarize_files(records)
    stats["timestamp"] = datetime.now(timezone.utc).isoformat()
    return {"success": True, "data": stats}


@router.get("/search")
async def search_files(
    q: str = Query(""),
    type: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    store: FileRecordStore = Depends(get_file_store),
):
    """Match filename, description or tags (case-insensitive)."""
    if not q.strip():
        raise ValidationError("Search query (q) parameter is required")
    records = await store.search(user_id, q, mime_type_prefix=type)
    return {
        "success": True,
        "data": [file_to_response(r) for r in records],
        "search": {"query": q, "typeFilter": type or "all", "resultsFound": len(records)},
    }


@router.patch("")
async def bulk_update(
    body: BulkUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    bulk: BulkOrchestrator = Depends(get_bulk_service),
):
    outcome = await bulk.update_many(body.files, user_id)
    return JSONResponse(
        status_code=outcome.status_code,
        content=bulk_response(outcome, f"{outcome.succeeded} of {outcome.requested} files updated successfully"),
    )


@router.delete("")
async def bulk_delete(
    body: BulkIdsRequest,
    user_id: str = Depends(get_current_user_id),
    bulk: BulkOrchestrator = Depends(get_bulk_service),
):
    outcome = await bulk.delete_many(body.ids, user_id)
    return JSONResponse(
        status_code=outcome.status_code,
        content=bulk_response(
            outcome,
            f"{outcome.succeeded} of {outcome.requested} files deleted successfully",
            serialize=lambda record: {"id": str(record.id), "filename": record.filename},
        ),
    )


@router.post("/download")
async def bulk_download(
    body: BulkIdsRequest,
    user_id: str = Depends(get_current_user_id),
    assembler: ArchiveAssembler = Depends(get_archive_assembler),
):
    """Download several files as one ZIP archive."""
    archive = await assembler.build_archive(body.ids, user_id)
    return StreamingResponse(
        archive.chunks(),
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{archive.filename}"'},
    )


@router.post("/regenerate")
async def bulk_regenerate(
    body: BulkRegenerateRequest,
    user_id: str = Depends(get_current_user_id),
    bulk: BulkOrchestrator = Depends(get_bulk_service),
):
    outcome = await bulk.regenerate_many(body.ids, user_id, tag_style=body.tag_style)
    return JSONResponse(
        status_code=outcome.status_code,
        content=bulk_response(outcome, f"{outcome.succeeded} of {outcome.requested} files regenerated successfully"),
    )


@router.get("/{file_id}")
async def get_file(
    file_id: str,
    user_id: str = Depends(get_current_user_id),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    record = await uploads.get_file(file_id, user_id)
    return {"success": True, "data": file_to_response(record)}


@router.patch("/{file_id}")
async def update_file(
    file_id: str,
    patch: FilePatch,
    user_id: str = Depends(get_current_user_id),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    """Edit filename, description or tags. Only provided fields change."""
    record = await uploads.update_metadata(file_id, user_id, patch)
    return {
        "success": True,
        "message": "File metadata updated successfully",
        "data": file_to_response(record),
    }


@router.delete("/{file_id}")
async def delete_file(
    file_id: str,
    user_id: str = Depends(get_current_user_id),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    record = await uploads.delete_file(file_id, user_id)
    return {"success": True, "message": "File deleted successfully", "data": {"id": str(record.id)}}


@router.get("/{file_id}/download")
async def download_file(
    file_id: str,
    user_id: str = Depends(get_current_user_id),
    uploads: UploadOrchestrator = Depends(get_upload_service),
    storage: StorageAdapter = Depends(get_storage),
):
    record = await uploads.get_file(file_id, user_id)
    try:
        content = await storage.download(record.file_path)
    except Exception as e:
        raise ExternalServiceError("Storage", safe_error_message(e, "Download failed")) from e
    return Response(
        content=content,
        media_type=record.mime_type or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(record.filename)}"},
    )


@router.post("/{file_id}/regenerate")
async def regenerate_file(
    file_id: str,
    body: TagStyleRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    tag_style = body.tag_style if body else DEFAULT_TAG_STYLE
    result = await uploads.analyze_existing_file(file_id, user_id, tag_style)
    return {
        "success": True,
        "message": "AI analysis regenerated successfully",
        "data": file_to_response(result.record),
    }


@router.post("/{file_id}/refresh-url")
async def refresh_file_url(
    file_id: str,
    user_id: str = Depends(get_current_user_id),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    record = await uploads.refresh_file_url(file_id, user_id)
    return {"success": True, "data": file_to_response(record)}
