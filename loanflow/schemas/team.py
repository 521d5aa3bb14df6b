from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from loanflow.core.permissions import UserRole
from loanflow.schemas.attachments import TaskAttachmentOut
from loanflow.schemas.tasks import TaskQueueItem


class TeamMemberOut(BaseModel):
    id: UUID
    name: str
    email: str
    role: UserRole
    active: bool
    loan_count: int = 0
    task_count: int = 0
    created_at: datetime | None = None


class MemberLoanOut(BaseModel):
    model_config = ConfigDict(json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    loan_number: str
    borrower_name: str
    amount: Decimal
    stage: str
    updated_at: datetime | None = None


class MemberTaskOut(TaskQueueItem):
    attachments: list[TaskAttachmentOut] = []


class MemberDetailsOut(BaseModel):
    member: TeamMemberOut
    loans: list[MemberLoanOut]
    tasks: list[MemberTaskOut]


class ReassignLoansRequest(BaseModel):
    from_user_id: UUID
    to_user_id: UUID


class ReassignLoansResult(BaseModel):
    reassigned: int
