"""Upload API routes."""
from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse

from snaptag.dependencies import get_bulk_service, get_current_user_id, get_upload_service
from snaptag.schemas.common import bulk_response, file_to_response
from snaptag.schemas.file import TagStyleRequest
from snaptag.services.bulk_service import (
    BulkOperation, BulkOrchestrator, UploadItem, check_batch_size,
)
from snaptag.services.image_analysis import DEFAULT_TAG_STYLE
from snaptag.services.upload_service import UploadOptions, UploadOrchestrator, UploadResult

router = APIRouter(prefix="/api/upload", tags=["upload"])


def _with_analysis(result: UploadResult) -> dict:
    data = file_to_response(result.record)
    analysis = result.analysis
    data["analysis"] = {
        "success": bool(analysis and analysis.success),
        "error": analysis.error if analysis else None,
    }
    return data


@router.post("/image")
async def upload_image(
    file: UploadFile = File(...),
    tag_style: str = Form(DEFAULT_TAG_STYLE, alias="tagStyle"),
    user_id: str = Depends(get_current_user_id),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    """Upload a single image without AI analysis."""
    contents = await file.read()
    result = await uploads.upload_and_process(
        contents, file.filename or "", user_id,
        content_type=file.content_type,
        options=UploadOptions(tag_style=tag_style, analyze_with_ai=False),
    )
    return {
        "success": True,
        "message": "Image uploaded successfully",
        "data": file_to_response(result.record),
    }


@router.post("/upload-and-analyze")
async def upload_and_analyze(
    file: UploadFile = File(...),
    tag_style: str = Form(DEFAULT_TAG_STYLE, alias="tagStyle"),
    user_id: str = Depends(get_current_user_id),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    """Upload an image and analyze it immediately.

    An analysis failure still returns the stored record (status ``failed``)
    together with the reason.
    """
    contents = await file.read()
    result = await uploads.upload_and_process(
        contents, file.filename or "", user_id,
        content_type=file.content_type,
        options=UploadOptions(tag_style=tag_style, analyze_with_ai=True),
    )
    analyzed = bool(result.analysis and result.analysis.success)
    return {
        "success": True,
        "message": "Image uploaded and analyzed successfully" if analyzed
        else "Image uploaded, analysis failed",
        "data": _with_analysis(result),
    }


@router.post("/bulk-upload-and-analyze")
async def bulk_upload_and_analyze(
    files: list[UploadFile] = File(...),
    tag_style: str = Form(DEFAULT_TAG_STYLE, alias="tagStyle"),
    user_id: str = Depends(get_current_user_id),
    bulk: BulkOrchestrator = Depends(get_bulk_service),
):
    """Upload and analyze several images; 200, 207 or 500 by outcome."""
    check_batch_size(BulkOperation.UPLOAD, len(files))
    items = [
        UploadItem(filename=f.filename or "", content=await f.read(), content_type=f.content_type)
        for f in files
    ]
    outcome = await bulk.upload_many(items, user_id, tag_style=tag_style)
    return JSONResponse(
        status_code=outcome.status_code,
        content=bulk_response(
            outcome,
            f"Processed {outcome.succeeded} of {outcome.requested} images",
            serialize=_with_analysis,
        ),
    )


@router.post("/analyze/{file_id}")
async def analyze_file(
    file_id: str,
    body: TagStyleRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    uploads: UploadOrchestrator = Depends(get_upload_service),
):
    """Run AI analysis on an already uploaded image."""
    tag_style = body.tag_style if body else DEFAULT_TAG_STYLE
    result = await uploads.analyze_existing_file(file_id, user_id, tag_style)
    return {
        "success": True,
        "message": "Image analyzed successfully",
        "data": _with_analysis(result),
    }
