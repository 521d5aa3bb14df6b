import uuid

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID

from loanflow.db.base import Base


class TaskAttachment(Base):
    __tablename__ = "task_attachments"
    __table_args__ = (
        CheckConstraint("purpose IN ('PROOF', 'OTHER')", name="purpose"),
        CheckConstraint("size_bytes >= 0", name="size_nonneg"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    task_id = Column(UUID(as_uuid=True), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    purpose = Column(String(20), nullable=False, default="PROOF")
    storage_path = Column(String(1024), nullable=False)
    filename = Column(String(255), nullable=False)
    content_type = Column(String(255), nullable=True)
    size_bytes = Column(BigInteger, nullable=False, default=0)
    uploaded_by_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    client_document_id = Column(
        UUID(as_uuid=True), ForeignKey("client_documents.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
