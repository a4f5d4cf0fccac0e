import asyncio

import pytest

from digpaper.client.service import open_client, serve
from digpaper.config import ClientSettings


def client_settings(queue_url: str, **overrides) -> ClientSettings:
    values = dict(server_url="http://127.0.0.1:9/", queue_url=queue_url, request_timeout=2.0, poll_interval=0.05)
    values.update(overrides)
    return ClientSettings(**values)


def test_client_settings_read_prefixed_env(monkeypatch):
    monkeypatch.setenv("DIGPAPER_SERVER_URL", "https://office.example/api/")
    monkeypatch.setenv("DIGPAPER_EVICT_REJECTED", "false")
    monkeypatch.setenv("DIGPAPER_AUTHOR_NAME", "Giulia")
    cfg = ClientSettings()
    assert cfg.server_url == "https://office.example/api"
    assert cfg.evict_rejected is False
    assert cfg.author_name == "Giulia"


@pytest.mark.asyncio
async def test_open_client_wires_shared_queue(queue_url):
    cfg = client_settings(queue_url, evict_rejected=False, author_name="Giulia")
    async with open_client(cfg) as field:
        assert field.engine.queue is field.queue
        assert field.capture.queue is field.queue
        assert field.engine.evict_rejected is False
        assert field.client.base_url == "http://127.0.0.1:9"
        assert field.client.author_name == "Giulia"

        result = await field.capture.submit(b"x" * 32, "site.jpg", online=False)
        assert result.queued
        assert await field.queue.count() == 1


@pytest.mark.asyncio
async def test_serve_keeps_items_while_server_is_down(queue_url):
    cfg = client_settings(queue_url)
    async with open_client(cfg) as field:
        await field.queue.enqueue(b"x" * 32, "site.jpg")

    stop = asyncio.Event()
    task = asyncio.create_task(serve(cfg, stop_event=stop))
    await asyncio.sleep(0.2)
    stop.set()
    await asyncio.wait_for(task, timeout=5)

    async with open_client(cfg) as field:
        assert await field.queue.count() == 1
