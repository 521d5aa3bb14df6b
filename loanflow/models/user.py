import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from loanflow.db.base import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "role IN ('ADMIN', 'MANAGER', 'LOAN_OFFICER', 'DISCLOSURE_SPECIALIST', 'VA', 'VA_TITLE', "
            "'VA_HOI', 'VA_PAYOFF', 'VA_APPRAISAL', 'QC', 'PROCESSOR_JR', 'PROCESSOR_SR')",
            name="role",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(40), nullable=False, index=True)
    active = Column(Boolean, nullable=False, default=True, server_default="true")
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
