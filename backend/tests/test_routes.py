"""
HTTP-level tests: status codes and response shapes.

Adapters are swapped through ``app.dependency_overrides`` so the routes run
against the per-test database, blob directory and fake analyzer.
"""
import io
import uuid
import zipfile
from urllib.parse import urlsplit

import httpx
import pytest
import pytest_asyncio

from conftest import OTHER_USER_ID, USER_ID, jpeg_bytes
from snaptag.dependencies import get_file_store, get_image_analyzer, get_storage
from snaptag.main import app
from snaptag.services.image_analysis import AnalysisResult

HEADERS = {"X-User-Id": USER_ID}


@pytest_asyncio.fixture
async def client(store, storage, analyzer):
    app.dependency_overrides[get_file_store] = lambda: store
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_image_analyzer] = lambda: analyzer
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _image(name="photo.jpg", content=None, content_type="image/jpeg"):
    return (name, content if content is not None else jpeg_bytes(), content_type)


# ============================================================================
# UPLOAD
# ============================================================================


@pytest.mark.asyncio
async def test_missing_user_header_is_rejected(client):
    response = await client.get("/api/files")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Missing X-User-Id header", "details": None}


@pytest.mark.asyncio
async def test_upload_and_analyze(client, analyzer):
    response = await client.post(
        "/api/upload/upload-and-analyze",
        files={"file": _image("bike.jpg", jpeg_bytes(500 * 1024))},
        data={"tagStyle": "playful"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "completed"
    assert data["description"] == "a red bicycle"
    assert len(data["tags"]) == 5
    assert data["userId"] == USER_ID
    assert data["analysis"] == {"success": True, "error": None}
    assert analyzer.calls[0][1] == "playful"


@pytest.mark.asyncio
async def test_upload_image_without_analysis(client, analyzer):
    response = await client.post("/api/upload/image", files={"file": _image()}, headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "uploaded"
    assert analyzer.calls == []


@pytest.mark.asyncio
async def test_upload_invalid_extension_is_400(client):
    response = await client.post(
        "/api/upload/image", files={"file": _image("doc.pdf", b"%PDF", "application/pdf")}, headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid file extension"


@pytest.mark.asyncio
async def test_upload_storage_failure_is_503(client, storage):
    storage.fail_upload_markers.add(b"")

    response = await client.post("/api/upload/image", files={"file": _image()}, headers=HEADERS)

    assert response.status_code == 503
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_bulk_upload_partial_is_207(client, storage):
    storage.fail_upload_markers.add(b"BAD")

    response = await client.post(
        "/api/upload/bulk-upload-and-analyze",
        files=[
            ("files", _image("a.jpg")),
            ("files", _image("b.jpg", jpeg_bytes(marker=b"BAD"))),
            ("files", _image("c.jpg")),
        ],
        headers=HEADERS,
    )

    assert response.status_code == 207
    body = response.json()
    assert body["status"] == "partial"
    assert body["data"]["totalSucceeded"] == 2
    assert body["data"]["errors"][0]["id"] == "b.jpg"
    assert [r["filename"] for r in body["data"]["results"]] == ["a.jpg", "c.jpg"]


@pytest.mark.asyncio
async def test_bulk_upload_all_failed_is_500(client, storage):
    storage.fail_upload_markers.add(b"")

    response = await client.post(
        "/api/upload/bulk-upload-and-analyze", files=[("files", _image())], headers=HEADERS,
    )

    assert response.status_code == 500
    assert response.json()["status"] == "failure"


@pytest.mark.asyncio
async def test_bulk_upload_over_cap_is_400(client):
    files = [("files", _image(f"{i}.jpg")) for i in range(11)]

    response = await client.post("/api/upload/bulk-upload-and-analyze", files=files, headers=HEADERS)

    assert response.status_code == 400
    assert "Maximum 10 files" in response.json()["error"]


# ============================================================================
# FILES
# ============================================================================


@pytest.mark.asyncio
async def test_get_list_and_foreign_access(client, upload):
    mine = await upload("mine.jpg")
    theirs = await upload("theirs.jpg", user_id=OTHER_USER_ID)

    listed = await client.get("/api/files", headers=HEADERS)
    own = await client.get(f"/api/files/{mine.id}", headers=HEADERS)
    foreign = await client.get(f"/api/files/{theirs.id}", headers=HEADERS)

    assert listed.json()["total"] == 1
    assert own.status_code == 200
    assert own.json()["data"]["filename"] == "mine.jpg"
    assert foreign.status_code == 404
    assert foreign.json()["error"] == "File not found or access denied"


@pytest.mark.asyncio
async def test_patch_file(client, upload):
    record = await upload()

    response = await client.patch(
        f"/api/files/{record.id}", json={"description": "edited", "tags": ["a", "A", " b "]}, headers=HEADERS,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["description"] == "edited"
    assert data["tags"] == ["a", "b"]


@pytest.mark.asyncio
async def test_patch_with_too_many_tags_is_422(client, upload):
    record = await upload()

    response = await client.patch(
        f"/api/files/{record.id}", json={"tags": [f"t{i}" for i in range(11)]}, headers=HEADERS,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_delete_file(client, upload, store):
    record = await upload()

    response = await client.delete(f"/api/files/{record.id}", headers=HEADERS)

    assert response.status_code == 200
    assert await store.find_by_id(record.id, USER_ID) is None


@pytest.mark.asyncio
async def test_bulk_delete_with_missing_id_is_207(client, upload):
    record = await upload()
    missing = str(uuid.uuid4())

    response = await client.request(
        "DELETE", "/api/files", json={"ids": [str(record.id), missing]}, headers=HEADERS,
    )

    assert response.status_code == 207
    body = response.json()
    assert body["data"]["results"] == [{"id": str(record.id), "filename": "photo.jpg"}]
    assert body["data"]["errors"] == [{"id": missing, "error": "File not found or access denied"}]


@pytest.mark.asyncio
async def test_bulk_delete_nothing_found_is_400(client):
    response = await client.request(
        "DELETE", "/api/files", json={"ids": [str(uuid.uuid4())]}, headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["status"] == "failure"


@pytest.mark.asyncio
async def test_bulk_update(client, upload):
    record = await upload()

    response = await client.patch(
        "/api/files",
        json={"files": [{"id": str(record.id), "filename": "new.jpg"}, {"filename": "orphan.jpg"}]},
        headers=HEADERS,
    )

    assert response.status_code == 207
    assert response.json()["data"]["results"][0]["filename"] == "new.jpg"


@pytest.mark.asyncio
async def test_bulk_download_returns_zip(client, upload):
    first = await upload("photo.jpg")
    second = await upload("photo.jpg")

    response = await client.post(
        "/api/files/download", json={"ids": [str(first.id), str(second.id)]}, headers=HEADERS,
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert 'filename="files-' in response.headers["content-disposition"]
    with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
        assert zf.namelist() == ["photo.jpg", "photo-1.jpg"]


@pytest.mark.asyncio
async def test_bulk_download_nothing_valid_is_400(client):
    response = await client.post("/api/files/download", json={"ids": [str(uuid.uuid4())]}, headers=HEADERS)

    assert response.status_code == 400
    assert response.json()["error"] == "No valid files found to download"


@pytest.mark.asyncio
async def test_regenerate_failure_is_503(client, upload, analyzer):
    record = await upload()
    analyzer.result = AnalysisResult.failure("model overloaded")

    response = await client.post(f"/api/files/{record.id}/regenerate", json={"tagStyle": "seo"}, headers=HEADERS)

    assert response.status_code == 503
    body = response.json()
    assert body["error"] == "AI: model overloaded"
    assert body["details"]["retryable"] is True


@pytest.mark.asyncio
async def test_bulk_regenerate(client, upload):
    record = await upload()

    response = await client.post(
        "/api/files/regenerate", json={"ids": [str(record.id)], "tagStyle": "neutral"}, headers=HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["data"]["results"][0]["status"] == "completed"


@pytest.mark.asyncio
async def test_search_and_stats(client, upload):
    record = await upload("beach.jpg", analyze=True)
    await upload("other.jpg")

    search = await client.get("/api/files/search", params={"q": "bicycle"}, headers=HEADERS)
    stats = await client.get("/api/files/stats", headers=HEADERS)

    assert [f["id"] for f in search.json()["data"]] == [str(record.id)]
    data = stats.json()["data"]
    assert data["total_files"] == 2
    assert data["files_with_ai_analysis"] == 1
    assert data["status_distribution"] == {"completed": 1, "uploaded": 1}


@pytest.mark.asyncio
async def test_search_requires_query(client):
    response = await client.get("/api/files/search", params={"q": " "}, headers=HEADERS)

    assert response.status_code == 400


# ============================================================================
# STORAGE
# ============================================================================


@pytest.mark.asyncio
async def test_stored_object_is_served_from_its_url(client, upload):
    content = jpeg_bytes(marker=b"served")
    record = await upload(content=content)

    response = await client.get(urlsplit(record.public_url).path)

    assert response.status_code == 200
    assert response.content == content


@pytest.mark.asyncio
async def test_single_file_download(client, upload):
    content = jpeg_bytes(marker=b"single")
    record = await upload(content=content)

    response = await client.get(f"/api/files/{record.id}/download", headers=HEADERS)

    assert response.status_code == 200
    assert response.content == content
    assert response.headers["content-type"] == "image/jpeg"


@pytest.mark.asyncio
async def test_refresh_url(client, upload):
    record = await upload()

    response = await client.post(f"/api/files/{record.id}/refresh-url", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["data"]["publicUrl"] == record.public_url
