import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from loanflow.db.base import Base


class PipelineStage(Base):
    """A loan officer's Kanban column."""

    __tablename__ = "pipeline_stages"
    __table_args__ = (
        # Deferred so a reorder can swap two positions inside one transaction.
        UniqueConstraint(
            "user_id",
            "order",
            name="uq_pipeline_stages_user_order",
            deferrable=True,
            initially="DEFERRED",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    order = Column(Integer, nullable=False)
    color = Column(String(20), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False, server_default="false")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
