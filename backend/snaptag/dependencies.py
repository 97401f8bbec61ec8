"""FastAPI dependency providers.

Each request builds its adapters and services explicitly from settings;
tests swap any of them through ``app.dependency_overrides``.
"""

from fastapi import Depends, Header

from snaptag.config import settings
from snaptag.database import async_session
from snaptag.services.archive import ArchiveAssembler
from snaptag.services.bulk_service import BulkOrchestrator
from snaptag.services.errors import ValidationError
from snaptag.services.file_repository import FileRecordStore, SqlFileRecordStore
from snaptag.services.file_storage import LocalFileStorage, StorageAdapter
from snaptag.services.image_analysis import ImageAnalyzer, create_vision_provider
from snaptag.services.upload_service import UploadOrchestrator, validate_user_id



def get_current_user_id(x_user_id: str = Header(default="")) -> str:
    """Identity of the caller. Token verification happens upstream."""
    if not x_user_id:
        raise ValidationError("Missing X-User-Id header")
    return validate_user_id(x_user_id)


def get_storage() -> StorageAdapter:
    return LocalFileStorage(
        settings.FILE_STORAGE_PATH,
        public_base_url=settings.FILE_PUBLIC_BASE_URL,
        signing_key=settings.FILE_URL_SIGNING_KEY,
        url_ttl_seconds=settings.FILE_URL_TTL_SECONDS,
    )


def get_image_analyzer() -> ImageAnalyzer:
    provider_name = settings.DEFAULT_LLM_PROVIDER
    if provider_name == "gemini":
        api_key, model = settings.GEMINI_API_KEY, settings.GEMINI_MODEL
    else:
        api_key, model = settings.OPENAI_API_KEY, settings.OPENAI_MODEL

    if not api_key or not model:
        # Uploads still work; analysis reports "not configured"
        return ImageAnalyzer(provider=None)

    return ImageAnalyzer(create_vision_provider(
        provider_name,
        api_key=api_key,
        model_name=model,
        temperature=settings.ANALYSIS_TEMPERATURE,
        timeout=settings.ANALYSIS_TIMEOUT_SECONDS,
        max_tokens=settings.ANALYSIS_MAX_TOKENS,
    ))


def get_file_store() -> FileRecordStore:
    return SqlFileRecordStore(async_session)


def get_upload_service(
    storage: StorageAdapter = Depends(get_storage),
    analyzer: ImageAnalyzer = Depends(get_image_analyzer),
    store: FileRecordStore = Depends(get_file_store),
) -> UploadOrchestrator:
    return UploadOrchestrator(storage=storage, analyzer=analyzer, store=store)


def get_bulk_service(
    uploads: UploadOrchestrator = Depends(get_upload_service),
    store: FileRecordStore = Depends(get_file_store),
    storage: StorageAdapter = Depends(get_storage),
) -> BulkOrchestrator:
    return BulkOrchestrator(uploads=uploads, store=store, storage=storage)


def get_archive_assembler(
    storage: StorageAdapter = Depends(get_storage),
    store: FileRecordStore = Depends(get_file_store),
) -> ArchiveAssembler:
    return ArchiveAssembler(storage=storage, store=store)
