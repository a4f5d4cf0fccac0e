import uuid

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from digpaper.config import settings
from digpaper.storage import STORED_NAME_RE

JPEG = b"\xff\xd8\xff\xe0" + bytes(range(256)) * 40 + b"\xff\xd9"


def listing(root):
    return sorted(p.name for p in root.iterdir()) if root.exists() else []


@pytest.mark.asyncio
async def test_upload_creates_inbox_document(async_client):
    resp = await async_client.post(
        "/upload",
        files={"file": ("kitchen.jpg", JPEG, "image/jpeg")},
        data={"author_name": "Marco"},
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["file_type"] == "image"
    assert body["original_name"] == "kitchen.jpg"
    assert body["project_id"] is None
    assert body["author_name"] == "Marco"
    assert STORED_NAME_RE.match(body["stored_name"])
    assert body["file_url"] == f"/files/{body['stored_name']}"

    inbox = await async_client.get("/documents/inbox")
    assert [d["id"] for d in inbox.json()] == [body["id"]]


@pytest.mark.asyncio
async def test_file_bytes_round_trip(async_client):
    pdf = b"%PDF-1.7\n" + uuid.uuid4().bytes * 5000
    resp = await async_client.post("/upload", files={"file": ("offer.pdf", pdf, "application/pdf")})
    assert resp.status_code == 201
    doc = resp.json()
    assert doc["file_type"] == "pdf"
    assert doc["stored_name"].endswith(".pdf")

    served = await async_client.get(doc["file_url"])
    assert served.status_code == 200
    assert served.content == pdf
    assert served.headers["content-type"] == "application/pdf"


@pytest.mark.asyncio
async def test_upload_with_project_skips_inbox(async_client, make_project):
    project = await make_project("Villa Bianchi")
    resp = await async_client.post(
        "/upload",
        files={"file": ("facade.jpg", JPEG, "image/jpeg")},
        data={"project_id": project["id"]},
    )
    assert resp.status_code == 201
    doc = resp.json()
    assert doc["project_id"] == project["id"]

    inbox = await async_client.get("/documents/inbox")
    assert inbox.json() == []
    listed = await async_client.get(f"/projects/{project['id']}/documents")
    assert [d["id"] for d in listed.json()] == [doc["id"]]


@pytest.mark.asyncio
async def test_upload_with_unknown_project_lands_in_inbox(async_client):
    resp = await async_client.post(
        "/upload",
        files={"file": ("facade.jpg", JPEG, "image/jpeg")},
        data={"project_id": str(uuid.uuid4())},
    )
    assert resp.status_code == 201
    assert resp.json()["project_id"] is None


@pytest.mark.asyncio
async def test_generic_camera_name_is_replaced(async_client):
    resp = await async_client.post("/upload", files={"file": ("image.jpg", JPEG, "image/jpeg")})
    assert resp.status_code == 201
    assert resp.json()["original_name"].startswith("Photo ")


@pytest.mark.asyncio
async def test_missing_file_part_is_validation_failure(async_client, upload_dir):
    resp = await async_client.post("/upload", data={"author_name": "Marco"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_failure"
    assert listing(upload_dir) == []


@pytest.mark.asyncio
async def test_empty_file_is_stored_as_zero_byte_document(async_client, upload_dir):
    resp = await async_client.post("/upload", files={"file": ("blank.pdf", b"", "application/pdf")})
    assert resp.status_code == 201, resp.text
    doc = resp.json()
    assert doc["file_type"] == "pdf"
    assert listing(upload_dir) == [doc["stored_name"]]

    served = await async_client.get(doc["file_url"])
    assert served.status_code == 200
    assert served.content == b""


@pytest.mark.asyncio
async def test_oversized_upload_is_rejected_without_leftovers(async_client, upload_dir, monkeypatch):
    monkeypatch.setattr(settings, "max_upload_size", 1024)
    resp = await async_client.post("/upload", files={"file": ("big.jpg", JPEG, "image/jpeg")})
    assert resp.status_code == 413
    assert resp.json()["error"] == "payload_too_large"
    assert listing(upload_dir) == []
    assert (await async_client.get("/documents/inbox")).json() == []


@pytest.mark.asyncio
async def test_declared_oversize_is_rejected_before_reading_body(async_client, upload_dir, monkeypatch):
    async def never_called(*args, **kwargs):
        raise AssertionError("upload route ran for an oversized request")

    monkeypatch.setattr(settings, "max_upload_size", 1024)
    monkeypatch.setattr(settings, "upload_form_overhead", 1024)
    monkeypatch.setattr("digpaper.main.ingest_upload", never_called)
    resp = await async_client.post("/upload", files={"file": ("big.jpg", JPEG * 2, "image/jpeg")})
    assert resp.status_code == 413
    assert resp.json()["error"] == "payload_too_large"
    assert listing(upload_dir) == []


@pytest.mark.asyncio
async def test_unknown_type_is_stored_as_other(async_client):
    resp = await async_client.post(
        "/upload", files={"file": ("measurements.dwg", b"AC1032" * 10, "application/octet-stream")}
    )
    assert resp.status_code == 201
    doc = resp.json()
    assert doc["file_type"] == "other"
    assert doc["stored_name"].endswith(".dwg")


@pytest.mark.asyncio
async def test_unknown_type_rejected_when_configured(async_client, upload_dir, monkeypatch):
    monkeypatch.setattr(settings, "reject_unknown_types", True)
    resp = await async_client.post(
        "/upload", files={"file": ("measurements.dwg", b"AC1032" * 10, "application/octet-stream")}
    )
    assert resp.status_code == 415
    assert resp.json()["error"] == "unsupported_media_type"
    assert listing(upload_dir) == []


@pytest.mark.asyncio
async def test_replayed_upload_returns_the_same_document(async_client, upload_dir):
    key = str(uuid.uuid4())
    first = await async_client.post(
        "/upload", files={"file": ("kitchen.jpg", JPEG, "image/jpeg")}, data={"client_upload_id": key}
    )
    second = await async_client.post(
        "/upload", files={"file": ("kitchen.jpg", JPEG, "image/jpeg")}, data={"client_upload_id": key}
    )
    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]
    assert len(listing(upload_dir)) == 1
    assert len((await async_client.get("/documents/inbox")).json()) == 1


@pytest.mark.asyncio
async def test_commit_failure_removes_written_file(async_client, upload_dir, monkeypatch):
    async def failing_commit(self):
        raise OperationalError("INSERT INTO documents", {}, Exception("disk I/O error"))

    monkeypatch.setattr(AsyncSession, "commit", failing_commit)
    resp = await async_client.post("/upload", files={"file": ("kitchen.jpg", JPEG, "image/jpeg")})
    monkeypatch.undo()

    assert resp.status_code == 500
    assert resp.json()["error"] == "storage_failure"
    assert listing(upload_dir) == []
    assert (await async_client.get("/documents/inbox")).json() == []


@pytest.mark.asyncio
async def test_unknown_file_is_not_found(async_client):
    resp = await async_client.get("/files/2025-01-01_00-00-00_abcd.jpg")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_traversal_attempt_is_not_found(async_client):
    resp = await async_client.get("/files/..%2Fintake.sqlite")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_healthz_reports_database_and_store(async_client):
    resp = await async_client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"database": True, "file_store": True}


@pytest.mark.asyncio
async def test_metrics_count_uploads(async_client):
    await async_client.post("/upload", files={"file": ("kitchen.jpg", JPEG, "image/jpeg")})
    resp = await async_client.get("/metrics")
    assert resp.status_code == 200
    assert "digpaper_uploads_total" in resp.text
