# digpaper/client/queue.py
import logging
import mimetypes
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, List, Optional

from sqlalchemy import Column, Integer, LargeBinary, String, TIMESTAMP, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from digpaper.errors import StorageFailure

logger = logging.getLogger(__name__)

ClientBase = declarative_base()

QueueListener = Callable[[int], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PendingUploadRecord(ClientBase):
    __tablename__ = "pending_uploads"
    __table_args__ = {"sqlite_autoincrement": True}  # local_id is never reused

    local_id = Column(Integer, primary_key=True, autoincrement=True)
    upload_key = Column(String(36), nullable=False, unique=True)  # sent as client_upload_id
    payload = Column(LargeBinary, nullable=False)
    original_name = Column(String, nullable=False)
    content_type = Column(String, nullable=True)
    target_project_id = Column(String(36), nullable=True)
    enqueued_at = Column(TIMESTAMP(timezone=True), nullable=False, default=_utcnow)


@dataclass(frozen=True)
class PendingUpload:
    local_id: int
    upload_key: str
    payload: bytes
    original_name: str
    content_type: Optional[str]
    target_project_id: Optional[str]
    enqueued_at: datetime

    @classmethod
    def from_record(cls, rec: PendingUploadRecord) -> "PendingUpload":
        return cls(
            local_id=rec.local_id,
            upload_key=rec.upload_key,
            payload=rec.payload,
            original_name=rec.original_name,
            content_type=rec.content_type,
            target_project_id=rec.target_project_id,
            enqueued_at=rec.enqueued_at,
        )


class DurableQueue:
    """
    Usage:
        queue = DurableQueue("sqlite+aiosqlite:///./digpaper-queue.db")
        await queue.open()
        local_id = await queue.enqueue(data, "IMG_0001.jpg")
        async for item in queue.list_pending():
            ...
        await queue.remove(local_id)
        await queue.close()
    """

    def __init__(self, url: str):
        self.url = url
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker] = None
        self._listeners: List[QueueListener] = []

    async def open(self) -> "DurableQueue":
        if self._engine is not None:
            return self
        self._engine = create_async_engine(self.url, echo=False, future=True)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False, class_=AsyncSession)
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(ClientBase.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            await self.close()
            raise StorageFailure(f"Cannot open upload queue at {self.url}: {e}") from e
        logger.info("Upload queue opened at %s", self.url)
        return self

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessions = None

    async def __aenter__(self) -> "DurableQueue":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _session(self) -> AsyncSession:
        if self._sessions is None:
            raise RuntimeError("DurableQueue is not open")
        return self._sessions()

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        """Register ``listener(pending_count)``. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _notify(self) -> None:
        if not self._listeners:
            return
        pending = await self.count()
        for listener in list(self._listeners):
            try:
                listener(pending)
            except Exception:
                logger.exception("Queue listener %r failed", listener)

    async def enqueue(self, payload: bytes, original_name: str, target_project_id: Optional[str] = None,
                      content_type: Optional[str] = None, upload_key: Optional[str] = None) -> int:
        """Persist one upload. ``upload_key`` is generated unless a direct attempt already used one."""
        if content_type is None:
            content_type, _ = mimetypes.guess_type(original_name)
        rec = PendingUploadRecord(
            upload_key=upload_key or str(uuid.uuid4()),
            payload=bytes(payload),
            original_name=original_name,
            content_type=content_type,
            target_project_id=target_project_id,
        )
        try:
            async with self._session() as session:
                session.add(rec)
                await session.commit()
                local_id = rec.local_id
        except (SQLAlchemyError, OSError) as e:
            logger.exception("Failed to enqueue %s", original_name)
            raise StorageFailure(f"Cannot persist {original_name} to the upload queue: {e}") from e
        logger.info("Queued %s as #%d (%d bytes)", original_name, local_id, len(rec.payload))
        await self._notify()
        return local_id

    async def get(self, local_id: int) -> Optional[PendingUpload]:
        async with self._session() as session:
            rec = await session.get(PendingUploadRecord, local_id)
            return PendingUpload.from_record(rec) if rec is not None else None

    async def list_pending(self) -> AsyncIterator[PendingUpload]:
        """
        Yield pending items in insertion order. The id list is taken up front;
        payloads are loaded one at a time, and items removed in the meantime
        are skipped. Each call starts a fresh pass.
        """
        async with self._session() as session:
            res = await session.execute(select(PendingUploadRecord.local_id).order_by(PendingUploadRecord.local_id))
            ids = list(res.scalars().all())
        for local_id in ids:
            item = await self.get(local_id)
            if item is None:
                continue
            yield item

    async def remove(self, local_id: int) -> None:
        async with self._session() as session:
            res = await session.execute(delete(PendingUploadRecord).where(PendingUploadRecord.local_id == local_id))
            await session.commit()
        if res.rowcount:
            logger.info("Removed #%d from upload queue", local_id)
            await self._notify()

    async def count(self) -> int:
        async with self._session() as session:
            res = await session.execute(select(func.count(PendingUploadRecord.local_id)))
            return res.scalar_one()
