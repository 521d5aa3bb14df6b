import uuid

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from loanflow.db.base import Base


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'BLOCKED')",
            name="status",
        ),
        CheckConstraint(
            "priority IN ('LOW', 'NORMAL', 'HIGH', 'URGENT')",
            name="priority",
        ),
        CheckConstraint(
            "kind IS NULL OR kind IN ('SUBMIT_DISCLOSURES', 'SUBMIT_QC', 'LO_NEEDS_INFO', "
            "'VA_TITLE', 'VA_HOI', 'VA_PAYOFF', 'VA_APPRAISAL')",
            name="kind",
        ),
        CheckConstraint(
            "workflow_state IN ('NONE', 'WAITING_ON_LO', 'WAITING_ON_LO_APPROVAL', 'READY_TO_COMPLETE')",
            name="workflow_state",
        ),
        CheckConstraint(
            "disclosure_reason IS NULL OR disclosure_reason IN "
            "('APPROVE_INITIAL_DISCLOSURES', 'MISSING_ITEMS', 'OTHER')",
            name="disclosure_reason",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loans.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="PENDING", index=True)
    priority = Column(String(20), nullable=False, default="NORMAL")
    kind = Column(String(40), nullable=True, index=True)
    workflow_state = Column(String(40), nullable=False, default="NONE")
    assigned_role = Column(String(40), nullable=True, index=True)
    assigned_user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    parent_task_id = Column(
        UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True
    )
    disclosure_reason = Column(String(40), nullable=True)
    loan_officer_approved_at = Column(DateTime(timezone=True), nullable=True)
    submission_data = Column(JSON, nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
