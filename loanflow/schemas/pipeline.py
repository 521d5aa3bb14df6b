from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from loanflow.schemas.loans import LoanOut, LoanStage
from loanflow.schemas.tasks import TaskOut


class PipelineStageOut(BaseModel):
    id: UUID
    user_id: UUID
    name: str
    order: int
    color: str | None = None
    is_default: bool

    class Config:
        from_attributes = True


class PipelineStageCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    color: str | None = Field(default=None, max_length=20)


class PipelineStageUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    color: str | None = Field(default=None, max_length=20)


class PipelineStageReorder(BaseModel):
    stage_ids: list[UUID]


class PipelineStageDelete(BaseModel):
    fallback_stage_id: UUID | None = None


class LoanPlacementRequest(BaseModel):
    stage_id: UUID | None = None


class PipelineNoteCreate(BaseModel):
    body: str = Field(min_length=1)


class PipelineNoteOut(BaseModel):
    id: UUID
    loan_id: UUID
    user_id: UUID
    author_name: str | None = None
    body: str
    created_at: datetime | None = None


class LoanOfficerOut(BaseModel):
    id: UUID
    name: str
    email: str


class PipelineBoardOut(BaseModel):
    owner_id: UUID
    stages: list[PipelineStageOut]
    loans: list[LoanOut]


class LoanDetailsOut(BaseModel):
    loan: LoanOut
    stage: LoanStage
    pipeline_stage: PipelineStageOut | None = None
    tasks: list[TaskOut]
    notes: list[PipelineNoteOut]


class PipelineCsvRow(BaseModel):
    loan_number: str | None = None
    borrower_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    borrower_phone: str | None = None
    borrower_email: str | None = None
    amount: str | None = None
    program: str | None = None
    property_address: str | None = None
    stage_name: str | None = None


class PipelineImportRequest(BaseModel):
    rows: list[PipelineCsvRow]


class PipelineImportResult(BaseModel):
    created: int
    skipped: int
