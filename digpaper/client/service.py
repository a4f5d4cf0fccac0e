# digpaper/client/service.py
"""
Background sync service for a field device.

Builds the queue, HTTP client and sync engine from ClientSettings
(``DIGPAPER_*`` env vars) and runs the engine until interrupted:

    DIGPAPER_SERVER_URL=https://office.example digpaper-sync
"""
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from digpaper.client.capture import CaptureService
from digpaper.client.queue import DurableQueue
from digpaper.client.sync import SyncEngine
from digpaper.client.transport import IntakeClient
from digpaper.config import ClientSettings, get_client_settings

logger = logging.getLogger(__name__)


@dataclass
class FieldClient:
    queue: DurableQueue
    client: IntakeClient
    capture: CaptureService
    engine: SyncEngine


@asynccontextmanager
async def open_client(settings: Optional[ClientSettings] = None) -> AsyncIterator[FieldClient]:
    """Yield the capture service and sync engine, sharing one queue and one HTTP client."""
    settings = settings or get_client_settings()
    queue = DurableQueue(settings.queue_url)
    client = IntakeClient(settings.server_url, timeout=settings.request_timeout, author_name=settings.author_name)
    await queue.open()
    try:
        yield FieldClient(
            queue=queue,
            client=client,
            capture=CaptureService(queue, client),
            engine=SyncEngine(queue, client, evict_rejected=settings.evict_rejected),
        )
    finally:
        await client.aclose()
        await queue.close()


async def serve(settings: Optional[ClientSettings] = None, stop_event: Optional[asyncio.Event] = None) -> None:
    settings = settings or get_client_settings()
    stop_event = stop_event or asyncio.Event()
    async with open_client(settings) as field:
        logger.info("Syncing %s to %s (%d pending)", settings.queue_url, settings.server_url,
                    await field.queue.count())
        await field.engine.run(stop_event, poll_interval=settings.poll_interval)


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    async def _main():
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # windows event loops do not support signal handlers
                pass
        await serve(stop_event=stop_event)

    asyncio.run(_main())


if __name__ == "__main__":
    main()
