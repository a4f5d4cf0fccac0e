# digpaper/workflow.py
import logging
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from digpaper.errors import NotFound
from digpaper.models import Document, Project
from digpaper.schemas import DocumentState

logger = logging.getLogger(__name__)


# Inbox while project_id is NULL
def state_of(doc: Document) -> DocumentState:
    return DocumentState.INBOX if doc.project_id is None else DocumentState.ASSIGNED


async def get_document(session: AsyncSession, document_id: str) -> Document:
    doc = await session.get(Document, document_id)
    if doc is None:
        raise NotFound(f"Document with id '{document_id}' not found")
    return doc


async def _require_project(session: AsyncSession, project_id: Optional[str]) -> None:
    if project_id is not None and await session.get(Project, project_id) is None:
        raise NotFound(f"Project with id '{project_id}' not found")


async def list_inbox(session: AsyncSession) -> List[Document]:
    res = await session.execute(
        select(Document).where(Document.project_id.is_(None)).order_by(Document.uploaded_at.desc())
    )
    return list(res.scalars().all())


async def list_project_documents(session: AsyncSession, project_id: str) -> List[Document]:
    await _require_project(session, project_id)
    res = await session.execute(
        select(Document).where(Document.project_id == project_id).order_by(Document.uploaded_at.desc())
    )
    return list(res.scalars().all())


async def assign(session: AsyncSession, document_id: str, project_id: Optional[str]) -> Document:
    """Set or clear a document's project. Reassigning to the same project is a no-op."""
    doc = await get_document(session, document_id)
    await _require_project(session, project_id)
    if doc.project_id == project_id:
        return doc
    previous = state_of(doc)
    doc.project_id = project_id
    await session.commit()
    logger.info("Document %s: %s -> %s (project=%s)", document_id, previous.value, state_of(doc).value, project_id)
    return doc


async def unassign(session: AsyncSession, document_id: str) -> Document:
    return await assign(session, document_id, None)


async def batch_assign(session: AsyncSession, document_ids: Sequence[str],
                       project_id: Optional[str]) -> List[Document]:
    """Assign several documents in one transaction; an unknown id aborts the whole batch."""
    await _require_project(session, project_id)
    unique_ids = list(dict.fromkeys(document_ids))
    res = await session.execute(select(Document).where(Document.id.in_(unique_ids)))
    found = {d.id: d for d in res.scalars().all()}
    missing = [i for i in unique_ids if i not in found]
    if missing:
        raise NotFound(f"Documents not found: {', '.join(missing)}")
    for doc in found.values():
        doc.project_id = project_id
    await session.commit()
    logger.info("Batch assigned %d documents to project %s", len(unique_ids), project_id)
    return [found[i] for i in unique_ids]
