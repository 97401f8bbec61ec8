"""Serves blobs from local storage behind (optionally signed) URLs."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from snaptag.config import settings
from snaptag.dependencies import get_storage
from snaptag.services.file_storage import LocalFileStorage, StorageAdapter, verify_signature

router = APIRouter(prefix="/api/storage", tags=["storage"])


@router.get("/{path:path}")
async def serve_object(
    path: str,
    expires: Optional[int] = Query(None),
    signature: Optional[str] = Query(None),
    storage: StorageAdapter = Depends(get_storage),
):
    if not isinstance(storage, LocalFileStorage):
        raise HTTPException(status_code=404, detail="Not found")

    if settings.FILE_URL_SIGNING_KEY:
        if expires is None or not signature or not verify_signature(
            settings.FILE_URL_SIGNING_KEY, path, expires, signature,
        ):
            raise HTTPException(status_code=403, detail="Invalid or expired URL")

    try:
        target = storage.resolve(path)
    except ValueError:
        raise HTTPException(status_code=404, detail="Not found")
    if not target.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(path=target)
