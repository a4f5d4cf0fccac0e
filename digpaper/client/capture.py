# digpaper/client/capture.py
import logging
import mimetypes
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from digpaper.client.queue import DurableQueue, PendingUpload
from digpaper.client.transport import AttemptOutcome, IntakeClient
from digpaper.errors import ServerRejected
from digpaper.schemas import DocumentOut

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    document: Optional[DocumentOut] = None
    local_id: Optional[int] = None

    @property
    def queued(self) -> bool:
        return self.local_id is not None


class CaptureService:
    """
    Entry point for freshly captured files.

    Online, the file is uploaded straight away; offline, or when that attempt
    fails transiently, it goes to the durable queue for the sync engine.
    Permanent rejections are raised to the caller and never queued.
    """

    def __init__(self, queue: DurableQueue, client: IntakeClient):
        self.queue = queue
        self.client = client

    async def submit(self, payload: bytes, original_name: str, project_id: Optional[str] = None,
                     content_type: Optional[str] = None, online: bool = True) -> SubmitResult:
        if content_type is None:
            content_type, _ = mimetypes.guess_type(original_name)

        if online:
            attempt = PendingUpload(
                local_id=0,
                upload_key=str(uuid.uuid4()),
                payload=payload,
                original_name=original_name,
                content_type=content_type,
                target_project_id=project_id,
                enqueued_at=datetime.now(timezone.utc),
            )
            result = await self.client.upload(attempt)
            if result.outcome is AttemptOutcome.DELIVERED:
                logger.info("Uploaded %s directly as document %s", original_name, result.document.id)
                return SubmitResult(document=result.document)
            if result.outcome is AttemptOutcome.PERMANENT:
                err = result.error
                if not isinstance(err, ServerRejected):
                    err = ServerRejected(result.status_code, str(err))
                raise err
            logger.info("Direct upload of %s failed (%s); queueing it", original_name, result.error)

        upload_key = attempt.upload_key if online else None
        local_id = await self.queue.enqueue(payload, original_name, project_id, content_type, upload_key=upload_key)
        return SubmitResult(local_id=local_id)
