from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from loanflow.schemas.attachments import TaskAttachmentPurpose, UploadUrlOut


class ClientOut(BaseModel):
    id: UUID
    owner_id: UUID
    display_name: str
    phone: str | None = None
    email: str | None = None
    lead_id: str | None = None

    class Config:
        from_attributes = True


class ClientDocumentOut(BaseModel):
    id: UUID
    client_id: UUID
    storage_path: str
    filename: str
    content_type: str | None = None
    size_bytes: int
    folder: str | None = None
    tags: list[str] = Field(default_factory=list)
    uploaded_by_id: UUID | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ClientFolderOut(BaseModel):
    client: ClientOut
    documents: list[ClientDocumentOut]


class ClientDocumentUploadRequest(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    content_type: str = Field(default="application/octet-stream", max_length=255)


class ClientDocumentUploadOut(UploadUrlOut):
    client_id: UUID


class ClientDocumentFinalize(BaseModel):
    storage_path: str = Field(min_length=1)
    filename: str = Field(min_length=1, max_length=255)
    content_type: str | None = None
    size_bytes: int | float | None = None
    folder: str | None = Field(default=None, max_length=120)
    tags: list[str] = Field(default_factory=list)


class AttachClientDocumentsRequest(BaseModel):
    document_ids: list[UUID] = Field(min_length=1)
    purpose: TaskAttachmentPurpose = TaskAttachmentPurpose.OTHER


class PipelineClientOut(BaseModel):
    loan_id: UUID
    loan_number: str
    borrower_name: str
    borrower_phone: str | None = None
    borrower_email: str | None = None
    client_id: UUID | None = None
    updated_at: datetime | None = None
