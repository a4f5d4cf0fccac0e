# digpaper/projects.py
import logging
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from digpaper.errors import NotFound, ValidationFailure
from digpaper.models import Document, Project
from digpaper.schemas import ProjectStatus

logger = logging.getLogger(__name__)


async def create_project(session: AsyncSession, name: str, address: Optional[str] = None,
                         client_phone: Optional[str] = None) -> Project:
    name = (name or "").strip()
    if not name:
        raise ValidationFailure("Project name cannot be empty")
    project = Project(name=name, status=ProjectStatus.ACTIVE.value, address=address, client_phone=client_phone)
    session.add(project)
    await session.commit()
    logger.info("Created project %s (%s)", project.id, name)
    return project


async def get_project(session: AsyncSession, project_id: str) -> Project:
    project = await session.get(Project, project_id)
    if project is None:
        raise NotFound(f"Project with id '{project_id}' not found")
    return project


async def list_projects(session: AsyncSession, status: Optional[str] = None) -> List[Project]:
    query = select(Project).order_by(Project.created_at.desc())
    if status:
        normalized = status.strip().upper()
        if normalized not in ProjectStatus.__members__:
            raise ValidationFailure(f"Invalid status filter '{status}'. Use 'active' or 'archived'")
        query = query.where(Project.status == normalized)
    res = await session.execute(query)
    return list(res.scalars().all())


async def update_project_status(session: AsyncSession, project_id: str, status: ProjectStatus) -> Project:
    project = await get_project(session, project_id)
    project.status = ProjectStatus(status).value
    await session.commit()
    logger.info("Project %s is now %s", project_id, project.status)
    return project


async def document_counts(session: AsyncSession, project_ids: List[str]) -> Dict[str, int]:
    if not project_ids:
        return {}
    res = await session.execute(
        select(Document.project_id, func.count(Document.id))
        .where(Document.project_id.in_(project_ids))
        .group_by(Document.project_id)
    )
    return {pid: count for pid, count in res.all()}
