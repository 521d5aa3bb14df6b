from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from loanflow.core.permissions import UserRole


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    BLOCKED = "BLOCKED"


class TaskPriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TaskKind(str, Enum):
    SUBMIT_DISCLOSURES = "SUBMIT_DISCLOSURES"
    SUBMIT_QC = "SUBMIT_QC"
    LO_NEEDS_INFO = "LO_NEEDS_INFO"
    VA_TITLE = "VA_TITLE"
    VA_HOI = "VA_HOI"
    VA_PAYOFF = "VA_PAYOFF"
    VA_APPRAISAL = "VA_APPRAISAL"


VA_TASK_KINDS = frozenset(
    {
        TaskKind.VA_TITLE.value,
        TaskKind.VA_HOI.value,
        TaskKind.VA_PAYOFF.value,
        TaskKind.VA_APPRAISAL.value,
    }
)


class TaskWorkflowState(str, Enum):
    NONE = "NONE"
    WAITING_ON_LO = "WAITING_ON_LO"
    WAITING_ON_LO_APPROVAL = "WAITING_ON_LO_APPROVAL"
    READY_TO_COMPLETE = "READY_TO_COMPLETE"


class DisclosureDecisionReason(str, Enum):
    APPROVE_INITIAL_DISCLOSURES = "APPROVE_INITIAL_DISCLOSURES"
    MISSING_ITEMS = "MISSING_ITEMS"
    OTHER = "OTHER"


class SubmissionType(str, Enum):
    DISCLOSURES = "DISCLOSURES"
    QC = "QC"


class DisclosureReviewDecision(str, Enum):
    APPROVE = "APPROVE"
    REVISION_REQUIRED = "REVISION_REQUIRED"


class TaskOut(BaseModel):
    id: UUID
    loan_id: UUID
    title: str
    description: str | None = None
    status: TaskStatus
    priority: TaskPriority
    kind: TaskKind | None = None
    workflow_state: TaskWorkflowState
    assigned_role: UserRole | None = None
    assigned_user_id: UUID | None = None
    parent_task_id: UUID | None = None
    disclosure_reason: DisclosureDecisionReason | None = None
    loan_officer_approved_at: datetime | None = None
    submission_data: dict[str, Any] | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class TaskQueueItem(TaskOut):
    loan_number: str | None = None
    borrower_name: str | None = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class SubmissionTaskCreate(BaseModel):
    submission_type: SubmissionType
    loan_number: str = Field(min_length=1, max_length=64)
    borrower_first_name: str = Field(min_length=1)
    borrower_last_name: str = ""
    borrower_phone: str | None = None
    borrower_email: str | None = None
    loan_amount: str | None = None
    notes: str | None = None
    loan_officer_id: UUID | None = None
    submission_data: dict[str, Any] | None = None


class SubmissionTaskCreated(BaseModel):
    task_id: UUID
    loan_id: UUID


class RequestInfoPayload(BaseModel):
    reason: DisclosureDecisionReason
    message: str = Field(min_length=1)


class LoanOfficerResponsePayload(BaseModel):
    message: str | None = None
    approve: bool = False


class DisclosureFiguresReview(BaseModel):
    decision: DisclosureReviewDecision
    message: str | None = None
