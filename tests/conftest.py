"""Shared pytest fixtures for intake server and field client tests."""

import os
import shutil
import tempfile
from pathlib import Path

# settings and the engine are built at import time, so point them at scratch
# locations before anything from digpaper is imported
_SCRATCH = Path(tempfile.mkdtemp(prefix="digpaper-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_SCRATCH / 'intake.sqlite'}"
os.environ["UPLOAD_DIR"] = str(_SCRATCH / "uploads")
os.environ["FSYNC_UPLOADS"] = "false"
os.environ["REJECT_UNKNOWN_TYPES"] = "false"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from digpaper.client.queue import DurableQueue  # noqa: E402
from digpaper.client.transport import IntakeClient  # noqa: E402
from digpaper.config import settings  # noqa: E402
from digpaper.db import close_engine, drop_models, init_models  # noqa: E402
from digpaper.main import app  # noqa: E402

BASE_URL = "http://testserver"


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_SCRATCH, ignore_errors=True)


@pytest.fixture
def upload_dir() -> Path:
    return Path(settings.upload_dir)


@pytest_asyncio.fixture
async def database(upload_dir: Path):
    """Fresh schema and an empty file store for every test."""
    await init_models()
    upload_dir.mkdir(parents=True, exist_ok=True)
    try:
        yield
    finally:
        await drop_models()
        # pooled aiosqlite connections belong to this test's event loop
        await close_engine()
        shutil.rmtree(upload_dir, ignore_errors=True)


@pytest_asyncio.fixture
async def async_client(database) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=BASE_URL) as client:
        yield client


@pytest_asyncio.fixture
async def make_project(async_client: AsyncClient):
    async def _make(name: str = "Casa Rossi", **fields) -> dict:
        resp = await async_client.post("/projects", json={"name": name, **fields})
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _make


@pytest.fixture
def queue_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.sqlite'}"


@pytest_asyncio.fixture
async def queue(queue_url: str) -> DurableQueue:
    q = DurableQueue(queue_url)
    await q.open()
    try:
        yield q
    finally:
        await q.close()


@pytest_asyncio.fixture
async def intake_client(async_client: AsyncClient) -> IntakeClient:
    """IntakeClient wired to the in-process app."""
    client = IntakeClient(BASE_URL, timeout=30.0, author_name="Marco", client=async_client)
    yield client
    await client.aclose()
