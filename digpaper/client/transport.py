# digpaper/client/transport.py
import enum
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import ValidationError

from digpaper.client.queue import PendingUpload
from digpaper.errors import DigPaperError, NetworkUnavailable, ServerRejected, ServerUnreachable
from digpaper.schemas import DocumentOut

logger = logging.getLogger(__name__)


class AttemptOutcome(str, enum.Enum):
    DELIVERED = "delivered"
    RETRYABLE = "retryable"
    PERMANENT = "permanent"


@dataclass
class AttemptResult:
    outcome: AttemptOutcome
    document: Optional[DocumentOut] = None
    error: Optional[DigPaperError] = None

    @property
    def delivered(self) -> bool:
        return self.outcome is AttemptOutcome.DELIVERED

    @property
    def status_code(self) -> int:
        return self.error.status_code if self.error is not None else 0

    @classmethod
    def failed(cls, error: DigPaperError) -> "AttemptResult":
        outcome = AttemptOutcome.RETRYABLE if error.retryable else AttemptOutcome.PERMANENT
        return cls(outcome=outcome, error=error)


def _error_from_response(resp: httpx.Response) -> ServerRejected:
    message, code = None, None
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("detail") or body.get("message")
        code = body.get("error")
        if not isinstance(message, str):
            message = str(message) if message is not None else None
    return ServerRejected(resp.status_code, message or f"HTTP {resp.status_code}", code)


class IntakeClient:
    """
    HTTP client for the intake server.

    ``upload`` never raises for network or server trouble: every attempt is
    folded into an AttemptResult. Pass ``client`` to reuse an existing
    httpx.AsyncClient (it is then not closed by ``aclose``).
    """

    def __init__(self, base_url: str, timeout: float = 120.0, author_name: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.author_name = author_name
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def upload(self, item: PendingUpload) -> AttemptResult:
        data = {"client_upload_id": item.upload_key}
        if item.target_project_id:
            data["project_id"] = item.target_project_id
        if self.author_name:
            data["author_name"] = self.author_name
        files = {"file": (item.original_name, item.payload, item.content_type or "application/octet-stream")}

        try:
            resp = await self._get_client().post(self._url("/upload"), data=data, files=files, timeout=self.timeout)
        except httpx.ConnectError as e:
            logger.warning("Upload #%d: cannot connect to %s: %s", item.local_id, self.base_url, e)
            return AttemptResult.failed(NetworkUnavailable(str(e) or None))
        except httpx.TransportError as e:
            logger.warning("Upload #%d: no response from %s: %s", item.local_id, self.base_url, e)
            return AttemptResult.failed(ServerUnreachable(str(e) or None))

        if resp.is_success:
            try:
                doc = DocumentOut.model_validate(resp.json())
            except (ValueError, ValidationError) as e:
                logger.warning("Upload #%d: unreadable success response: %s", item.local_id, e)
                return AttemptResult.failed(ServerRejected(502, "Malformed response from server"))
            return AttemptResult(outcome=AttemptOutcome.DELIVERED, document=doc)

        err = _error_from_response(resp)
        logger.warning("Upload #%d rejected with %d (%s): %s", item.local_id, resp.status_code, err.error_code, err)
        return AttemptResult.failed(err)

    async def ping(self) -> bool:
        """True when ``GET /healthz`` answers 200."""
        try:
            resp = await self._get_client().get(self._url("/healthz"), timeout=min(self.timeout, 10.0))
        except httpx.TransportError:
            return False
        return resp.status_code == 200
