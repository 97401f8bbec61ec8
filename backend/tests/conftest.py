"""
Pytest configuration and shared fixtures for snaptag tests.

The record store runs on a file-backed SQLite database (aiosqlite) per test,
blobs go to a temporary directory, and the AI adapter is a scripted fake.
"""
import os
import tempfile
from dataclasses import replace
from typing import Optional

# Set test environment variables before importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["FILE_STORAGE_PATH"] = tempfile.mkdtemp(prefix="snaptag-test-")
os.environ["FILE_URL_SIGNING_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["GEMINI_API_KEY"] = ""

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from snaptag.models import Base  # noqa: E402
from snaptag.services.archive import ArchiveAssembler  # noqa: E402
from snaptag.services.bulk_service import BulkOrchestrator  # noqa: E402
from snaptag.services.file_repository import SqlFileRecordStore  # noqa: E402
from snaptag.services.file_storage import LocalFileStorage  # noqa: E402
from snaptag.services.image_analysis import AnalysisResult  # noqa: E402
from snaptag.services.upload_service import UploadOptions, UploadOrchestrator  # noqa: E402

USER_ID = "user-123"
OTHER_USER_ID = "user-456"

JPEG_HEADER = b"\xff\xd8\xff\xe0"


def jpeg_bytes(size: int = 1024, marker: bytes = b"") -> bytes:
    """Fake JPEG payload of exactly ``size`` bytes."""
    body = JPEG_HEADER + marker
    return body + b"\x00" * (size - len(body))


class FlakyStorage(LocalFileStorage):
    """Local storage with switchable failures."""

    def __init__(self, base_path: str):
        super().__init__(base_path, public_base_url="http://test/api/storage")
        self.fail_upload_markers: set[bytes] = set()
        self.fail_download_paths: set[str] = set()
        self.fail_delete = False
        self.deleted_batches: list[list[str]] = []

    async def upload(self, content, path, content_type):
        if any(marker in content for marker in self.fail_upload_markers):
            raise OSError("Storage upload failed: bucket unavailable")
        return await super().upload(content, path, content_type)

    async def download(self, path):
        if path in self.fail_download_paths:
            raise OSError("Storage download failed: object unavailable")
        return await super().download(path)

    async def delete(self, path):
        if self.fail_delete:
            raise OSError("Storage delete failed: permission denied")
        await super().delete(path)

    async def delete_many(self, paths):
        self.deleted_batches.append(list(paths))
        await super().delete_many(paths)


class FakeAnalyzer:
    """Scripted stand-in for ImageAnalyzer."""

    def __init__(self, result: Optional[AnalysisResult] = None):
        self.result = result or AnalysisResult(
            success=True,
            description="a red bicycle",
            tags=["bicycle", "red", "outdoor", "transport", "wheel"],
        )
        self.calls: list[tuple[str, str]] = []

    async def analyze(self, image_url: str, tag_style: str = "neutral") -> AnalysisResult:
        self.calls.append((image_url, tag_style))
        return replace(self.result, tag_style=tag_style)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh database per test; file-backed so each session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'snaptag.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlFileRecordStore(session_factory)


@pytest.fixture
def storage(tmp_path):
    return FlakyStorage(str(tmp_path / "blobs"))


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def orchestrator(storage, analyzer, store):
    return UploadOrchestrator(storage=storage, analyzer=analyzer, store=store)


@pytest.fixture
def bulk(orchestrator, store, storage):
    return BulkOrchestrator(uploads=orchestrator, store=store, storage=storage)


@pytest.fixture
def assembler(storage, store):
    return ArchiveAssembler(storage=storage, store=store)


@pytest.fixture
def upload(orchestrator):
    """Upload helper: await upload("photo.jpg") -> FileRecord (no analysis)."""
    async def _upload(filename: str = "photo.jpg", content: Optional[bytes] = None,
                      user_id: str = USER_ID, analyze: bool = False):
        result = await orchestrator.upload_and_process(
            content if content is not None else jpeg_bytes(),
            filename, user_id,
            content_type="image/jpeg",
            options=UploadOptions(analyze_with_ai=analyze),
        )
        return result.record
    return _upload
