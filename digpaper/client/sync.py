# digpaper/client/sync.py
import asyncio
import enum
import itertools
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Set, Union

from digpaper.client.connectivity import ConnectivityMonitor
from digpaper.client.queue import DurableQueue, PendingUpload
from digpaper.client.transport import AttemptOutcome, AttemptResult, IntakeClient

logger = logging.getLogger(__name__)

RejectedCallback = Callable[[PendingUpload, AttemptResult], Union[None, Awaitable[None]]]


class SyncTrigger(str, enum.Enum):
    CONNECTIVITY_RESTORED = "connectivity_restored"
    FOREGROUND = "foreground"
    POLL = "poll"
    MANUAL = "manual"


@dataclass(frozen=True)
class SyncToken:
    serial: int
    trigger: SyncTrigger


class SyncGate:
    """Single-flight guard. ``acquire`` returns a token, or None while one is held."""

    def __init__(self):
        self._held: Optional[SyncToken] = None
        self._serials = itertools.count(1)

    @property
    def busy(self) -> bool:
        return self._held is not None

    def acquire(self, trigger: SyncTrigger) -> Optional[SyncToken]:
        if self._held is not None:
            return None
        self._held = SyncToken(next(self._serials), trigger)
        return self._held

    def release(self, token: SyncToken) -> None:
        if self._held is not token:
            raise RuntimeError(f"Sync token {token.serial} is not the one held")
        self._held = None


@dataclass
class SyncReport:
    trigger: SyncTrigger
    skipped: bool = False
    delivered: List[int] = field(default_factory=list)
    rejected: List[int] = field(default_factory=list)
    retained: List[int] = field(default_factory=list)
    remaining: int = 0

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.rejected) + len(self.retained)


class SyncEngine:
    def __init__(self, queue: DurableQueue, client: IntakeClient, gate: Optional[SyncGate] = None,
                 evict_rejected: bool = True, on_rejected: Optional[RejectedCallback] = None):
        self.queue = queue
        self.client = client
        self.gate = gate or SyncGate()
        self.evict_rejected = evict_rejected
        self.on_rejected = on_rejected
        self._tasks: Set[asyncio.Task] = set()

    async def sync_once(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncReport:
        token = self.gate.acquire(trigger)
        if token is None:
            logger.debug("Sync already in flight; %s trigger skipped", trigger.value)
            return SyncReport(trigger=trigger, skipped=True, remaining=await self.queue.count())

        report = SyncReport(trigger=trigger)
        try:
            async for item in self.queue.list_pending():
                await self._deliver(item, report)
            report.remaining = await self.queue.count()
        finally:
            self.gate.release(token)

        if report.attempted:
            logger.info(
                "Sync (%s): %d delivered, %d rejected, %d retained, %d remaining",
                trigger.value, len(report.delivered), len(report.rejected), len(report.retained), report.remaining,
            )
        return report

    async def _deliver(self, item: PendingUpload, report: SyncReport) -> None:
        try:
            result = await self.client.upload(item)
        except Exception:
            # one item never aborts the cycle
            logger.exception("Unexpected error uploading #%d; keeping it queued", item.local_id)
            report.retained.append(item.local_id)
            return

        if result.outcome is AttemptOutcome.DELIVERED:
            await self.queue.remove(item.local_id)
            report.delivered.append(item.local_id)
            logger.info("Delivered #%d (%s) as document %s", item.local_id, item.original_name, result.document.id)
        elif result.outcome is AttemptOutcome.PERMANENT and self.evict_rejected:
            await self.queue.remove(item.local_id)
            report.rejected.append(item.local_id)
            logger.warning("Dropped #%d (%s): server rejected it with %d",
                           item.local_id, item.original_name, result.status_code)
            await self._report_rejected(item, result)
        else:
            report.retained.append(item.local_id)

    async def _report_rejected(self, item: PendingUpload, result: AttemptResult) -> None:
        if self.on_rejected is None:
            return
        try:
            ret = self.on_rejected(item, result)
            if asyncio.iscoroutine(ret):
                await ret
        except Exception:
            logger.exception("on_rejected callback failed for #%d", item.local_id)

    def notify(self, trigger: SyncTrigger) -> asyncio.Task:
        """Schedule a cycle without waiting for it."""
        task = asyncio.create_task(self.sync_once(trigger))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def on_foreground(self) -> asyncio.Task:
        return self.notify(SyncTrigger.FOREGROUND)

    def on_connectivity_change(self, online: bool) -> Optional[asyncio.Task]:
        if not online:
            return None
        return self.notify(SyncTrigger.CONNECTIVITY_RESTORED)

    async def drain(self) -> None:
        """Wait for every scheduled cycle to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run(self, stop_event: asyncio.Event, poll_interval: float = 60.0,
                  monitor: Optional[ConnectivityMonitor] = None) -> None:
        """
        Run until ``stop_event`` is set: one cycle at start, one per poll
        interval, and one whenever the monitor sees the server come back.
        """
        monitor = monitor or ConnectivityMonitor(self.client.ping)
        monitor.add_listener(self.on_connectivity_change)
        logger.info("Sync engine started (poll every %.0fs)", poll_interval)
        try:
            if await monitor.check():
                await self.sync_once(SyncTrigger.MANUAL)
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass
                if stop_event.is_set():
                    break
                was_online = monitor.online
                if await monitor.check() and was_online:
                    # a restored link already scheduled its own cycle via the listener
                    await self.sync_once(SyncTrigger.POLL)
        finally:
            monitor.remove_listener(self.on_connectivity_change)
            await self.drain()
            logger.info("Sync engine stopped")
