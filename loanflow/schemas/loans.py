from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class LoanStage(str, Enum):
    INTAKE = "INTAKE"
    DISCLOSURES_PENDING = "DISCLOSURES_PENDING"
    DISCLOSURES_SENT = "DISCLOSURES_SENT"
    QC_REVIEW = "QC_REVIEW"
    SUBMIT_TO_UW_PREP = "SUBMIT_TO_UW_PREP"
    UNDERWRITING = "UNDERWRITING"
    CONDITIONAL_APPROVAL = "CONDITIONAL_APPROVAL"
    CLEAR_TO_CLOSE = "CLEAR_TO_CLOSE"
    FUNDED = "FUNDED"
    CLOSED = "CLOSED"


class LoanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: UUID
    loan_number: str
    borrower_name: str
    borrower_phone: str | None = None
    borrower_email: str | None = None
    amount: Decimal
    program: str | None = None
    property_address: str | None = None
    stage: LoanStage
    loan_officer_id: UUID
    pipeline_stage_id: UUID | None = None
    client_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class StageChangeRequest(BaseModel):
    stage: LoanStage
    user_id: UUID | None = None
