import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.dialects.postgresql import UUID

from loanflow.db.base import Base


class Loan(Base):
    __tablename__ = "loans"
    __table_args__ = (
        CheckConstraint(
            "stage IN ('INTAKE', 'DISCLOSURES_PENDING', 'DISCLOSURES_SENT', 'QC_REVIEW', "
            "'SUBMIT_TO_UW_PREP', 'UNDERWRITING', 'CONDITIONAL_APPROVAL', 'CLEAR_TO_CLOSE', "
            "'FUNDED', 'CLOSED')",
            name="stage",
        ),
        CheckConstraint("amount >= 0", name="amount_nonneg"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_number = Column(String(64), nullable=False, unique=True)
    borrower_name = Column(String(255), nullable=False)
    borrower_phone = Column(String(50), nullable=True)
    borrower_email = Column(String(255), nullable=True)
    amount = Column(Numeric(14, 2), nullable=False, default=0)
    program = Column(String(120), nullable=True)
    property_address = Column(String(500), nullable=True)
    stage = Column(String(40), nullable=False, default="INTAKE", index=True)
    loan_officer_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    pipeline_stage_id = Column(
        UUID(as_uuid=True), ForeignKey("pipeline_stages.id", ondelete="SET NULL"), nullable=True, index=True
    )
    client_id = Column(
        UUID(as_uuid=True), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
