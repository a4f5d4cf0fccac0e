# digpaper/models.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Index, Integer, String, TIMESTAMP
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(Base):
    __tablename__ = "projects"
    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    status = Column(String(16), nullable=False, default="ACTIVE")  # ACTIVE | ARCHIVED
    address = Column(String, nullable=True)
    client_phone = Column(String, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=_utcnow)


class Document(Base):
    """
    An uploaded file. project_id is NULL while the document sits in the Inbox.
    Only project_id changes after creation.
    """
    __tablename__ = "documents"
    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    stored_name = Column(String, nullable=False, unique=True)   # on-disk name under upload_dir
    file_type = Column(String(16), nullable=False)               # image | pdf | other
    original_name = Column(String, nullable=False)
    content_type = Column(String, nullable=True)
    size = Column(Integer, nullable=False, default=0)            # bytes
    author_name = Column(String, nullable=True)
    client_upload_id = Column(String(64), nullable=True, unique=True)  # idempotency token
    uploaded_at = Column(TIMESTAMP(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_documents_project_id", "project_id"),
        Index("ix_documents_uploaded_at", "uploaded_at"),
    )
