# digpaper/intake.py
"""
Streaming intake: bytes go to their final path first, then the row is committed.
A failed commit deletes the file.
"""
import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from digpaper import storage
from digpaper.config import settings
from digpaper.errors import StorageFailure, UnsupportedMediaType, ValidationFailure
from digpaper.models import Document, Project

logger = logging.getLogger(__name__)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


async def find_by_client_upload_id(session: AsyncSession, client_upload_id: str) -> Optional[Document]:
    res = await session.execute(select(Document).where(Document.client_upload_id == client_upload_id))
    return res.scalar_one_or_none()


async def _resolve_project_id(session: AsyncSession, project_id: Optional[str]) -> Optional[str]:
    if project_id is None:
        return None
    if await session.get(Project, project_id) is None:
        # unknown project ids fall back to the Inbox
        logger.warning("Upload names unknown project %s; placing document in Inbox", project_id)
        return None
    return project_id


async def ingest_upload(
    session: AsyncSession,
    upload,
    project_id: Optional[str] = None,
    author_name: Optional[str] = None,
    client_upload_id: Optional[str] = None,
) -> Tuple[Document, bool]:
    """
    Persist ``upload`` (an UploadFile or anything with filename, content_type
    and ``async read(n)``) and create its Document.

    Returns (document, created). ``created`` is False when ``client_upload_id``
    matched an earlier upload; the earlier document is returned untouched.
    """
    if upload is None:
        raise ValidationFailure("Missing 'file' part")

    project_id = _clean(project_id)
    author_name = _clean(author_name)
    client_upload_id = _clean(client_upload_id)

    if client_upload_id:
        existing = await find_by_client_upload_id(session, client_upload_id)
        if existing is not None:
            logger.info("Replay of upload %s; returning document %s", client_upload_id, existing.id)
            return existing, False

    content_type = storage.normalize_content_type(getattr(upload, "content_type", None))
    raw_name = getattr(upload, "filename", None)
    if settings.reject_unknown_types and not storage.is_recognized(content_type, raw_name):
        raise UnsupportedMediaType(f"Unrecognized file type for '{raw_name}' ({content_type})")

    file_type = storage.classify_file_type(content_type, raw_name)
    extension = storage.infer_extension(content_type, raw_name)
    project_id = await _resolve_project_id(session, project_id)
    now = datetime.now()

    stored = await storage.write_stream(upload, extension, now=now)

    doc = Document(
        project_id=project_id,
        stored_name=stored.name,
        file_type=file_type.value,
        original_name=storage.display_name(raw_name, now),
        content_type=content_type,
        size=stored.size,
        author_name=author_name,
        client_upload_id=client_upload_id,
    )
    session.add(doc)
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        storage.discard(stored.path)
        if client_upload_id:
            # lost a race against a concurrent retry of the same upload
            existing = await find_by_client_upload_id(session, client_upload_id)
            if existing is not None:
                return existing, False
        logger.exception("Document insert violated a constraint for %s", stored.name)
        raise StorageFailure("Failed to record document") from e
    except SQLAlchemyError as e:
        await session.rollback()
        storage.discard(stored.path)
        logger.exception("Document insert failed for %s", stored.name)
        raise StorageFailure("Failed to record document") from e
    # cancellation during commit keeps the file: the row may already be committed

    logger.info(
        "Stored %s as %s (%d bytes, %s, project=%s)",
        doc.original_name, stored.name, stored.size, doc.file_type, project_id,
    )
    return doc, True
