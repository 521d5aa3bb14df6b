from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class TaskAttachmentPurpose(str, Enum):
    PROOF = "PROOF"
    OTHER = "OTHER"


class UploadUrlRequest(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    content_type: str = Field(default="application/octet-stream", max_length=255)
    purpose: TaskAttachmentPurpose = TaskAttachmentPurpose.PROOF


class UploadUrlOut(BaseModel):
    upload_url: str
    method: str
    headers: dict[str, str]
    storage_path: str
    bucket: str


class FinalizeAttachmentRequest(BaseModel):
    storage_path: str = Field(min_length=1)
    filename: str = Field(min_length=1, max_length=255)
    content_type: str | None = None
    size_bytes: int | float | None = None
    purpose: TaskAttachmentPurpose = TaskAttachmentPurpose.PROOF


class TaskAttachmentOut(BaseModel):
    id: UUID
    task_id: UUID
    purpose: TaskAttachmentPurpose
    storage_path: str
    filename: str
    content_type: str | None = None
    size_bytes: int
    uploaded_by_id: UUID | None = None
    client_document_id: UUID | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class DownloadUrlOut(BaseModel):
    url: str
    expires_in: int
