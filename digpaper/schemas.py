"""
Request/response schemas for the HTTP API.

The client parses server responses with the same models, so both ends agree on
the wire format.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FileType(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    OTHER = "other"


class ProjectStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class DocumentState(str, Enum):
    INBOX = "INBOX"
    ASSIGNED = "ASSIGNED"


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: Optional[str] = None
    file_type: FileType
    original_name: str
    file_url: str
    stored_name: str
    author_name: Optional[str] = None
    uploaded_at: Optional[datetime] = None

    @property
    def state(self) -> DocumentState:
        return DocumentState.INBOX if self.project_id is None else DocumentState.ASSIGNED

    @classmethod
    def from_document(cls, doc) -> "DocumentOut":
        return cls(
            id=doc.id,
            project_id=doc.project_id,
            file_type=doc.file_type,
            original_name=doc.original_name,
            file_url=f"/files/{doc.stored_name}",
            stored_name=doc.stored_name,
            author_name=doc.author_name,
            uploaded_at=doc.uploaded_at,
        )


class AssignRequest(BaseModel):
    # required key, null means "back to the Inbox"
    project_id: Optional[str] = Field(...)


class BatchAssignRequest(BaseModel):
    document_ids: List[str] = Field(..., min_length=1)
    project_id: Optional[str] = Field(...)


class ProjectCreate(BaseModel):
    name: str
    address: Optional[str] = None
    client_phone: Optional[str] = None


class ProjectStatusUpdate(BaseModel):
    status: ProjectStatus


class ProjectOut(BaseModel):
    id: str
    name: str
    status: ProjectStatus
    address: Optional[str] = None
    client_phone: Optional[str] = None
    created_at: Optional[datetime] = None
    document_count: int = 0

    @classmethod
    def from_project(cls, project, document_count: int = 0) -> "ProjectOut":
        return cls(
            id=project.id,
            name=project.name,
            status=project.status,
            address=project.address,
            client_phone=project.client_phone,
            created_at=project.created_at,
            document_count=document_count,
        )


class ErrorOut(BaseModel):
    error: str
    detail: str
