"""Create portal schema"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _uuid(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), **kwargs)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        server_onupdate=sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "users",
        _uuid("id", primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("role", sa.String(length=40), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "role IN ('ADMIN', 'MANAGER', 'LOAN_OFFICER', 'DISCLOSURE_SPECIALIST', 'VA', 'VA_TITLE', "
            "'VA_HOI', 'VA_PAYOFF', 'VA_APPRAISAL', 'QC', 'PROCESSOR_JR', 'PROCESSOR_SR')",
            name="ck_users_role",
        ),
    )
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "pipeline_stages",
        _uuid("id", primary_key=True),
        _uuid("user_id", sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.UniqueConstraint(
            "user_id",
            "order",
            name="uq_pipeline_stages_user_order",
            deferrable=True,
            initially="DEFERRED",
        ),
    )
    op.create_index("ix_pipeline_stages_user_id", "pipeline_stages", ["user_id"])

    op.create_table(
        "clients",
        _uuid("id", primary_key=True),
        _uuid("owner_id", sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("lead_id", sa.String(length=120), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("owner_id", "phone", name="uq_clients_owner_phone"),
        sa.UniqueConstraint("owner_id", "lead_id", name="uq_clients_owner_lead"),
    )
    op.create_index("ix_clients_owner_id", "clients", ["owner_id"])

    op.create_table(
        "loans",
        _uuid("id", primary_key=True),
        sa.Column("loan_number", sa.String(length=64), nullable=False, unique=True),
        sa.Column("borrower_name", sa.String(length=255), nullable=False),
        sa.Column("borrower_phone", sa.String(length=50), nullable=True),
        sa.Column("borrower_email", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("program", sa.String(length=120), nullable=True),
        sa.Column("property_address", sa.String(length=500), nullable=True),
        sa.Column("stage", sa.String(length=40), nullable=False, server_default="INTAKE"),
        _uuid("loan_officer_id", sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        _uuid("pipeline_stage_id", sa.ForeignKey("pipeline_stages.id", ondelete="SET NULL"), nullable=True),
        _uuid("client_id", sa.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "stage IN ('INTAKE', 'DISCLOSURES_PENDING', 'DISCLOSURES_SENT', 'QC_REVIEW', "
            "'SUBMIT_TO_UW_PREP', 'UNDERWRITING', 'CONDITIONAL_APPROVAL', 'CLEAR_TO_CLOSE', "
            "'FUNDED', 'CLOSED')",
            name="ck_loans_stage",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_loans_amount_nonneg"),
    )
    op.create_index("ix_loans_stage", "loans", ["stage"])
    op.create_index("ix_loans_loan_officer_id", "loans", ["loan_officer_id"])
    op.create_index("ix_loans_pipeline_stage_id", "loans", ["pipeline_stage_id"])
    op.create_index("ix_loans_client_id", "loans", ["client_id"])

    op.create_table(
        "tasks",
        _uuid("id", primary_key=True),
        _uuid("loan_id", sa.ForeignKey("loans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("priority", sa.String(length=20), nullable=False, server_default="NORMAL"),
        sa.Column("kind", sa.String(length=40), nullable=True),
        sa.Column("workflow_state", sa.String(length=40), nullable=False, server_default="NONE"),
        sa.Column("assigned_role", sa.String(length=40), nullable=True),
        _uuid("assigned_user_id", sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _uuid("parent_task_id", sa.ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True),
        sa.Column("disclosure_reason", sa.String(length=40), nullable=True),
        sa.Column("loan_officer_approved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("submission_data", sa.JSON(), nullable=True),
        sa.Column("due_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'BLOCKED')", name="ck_tasks_status"),
        sa.CheckConstraint("priority IN ('LOW', 'NORMAL', 'HIGH', 'URGENT')", name="ck_tasks_priority"),
        sa.CheckConstraint(
            "kind IS NULL OR kind IN ('SUBMIT_DISCLOSURES', 'SUBMIT_QC', 'LO_NEEDS_INFO', "
            "'VA_TITLE', 'VA_HOI', 'VA_PAYOFF', 'VA_APPRAISAL')",
            name="ck_tasks_kind",
        ),
        sa.CheckConstraint(
            "workflow_state IN ('NONE', 'WAITING_ON_LO', 'WAITING_ON_LO_APPROVAL', 'READY_TO_COMPLETE')",
            name="ck_tasks_workflow_state",
        ),
        sa.CheckConstraint(
            "disclosure_reason IS NULL OR disclosure_reason IN "
            "('APPROVE_INITIAL_DISCLOSURES', 'MISSING_ITEMS', 'OTHER')",
            name="ck_tasks_disclosure_reason",
        ),
    )
    for column in ("loan_id", "status", "kind", "assigned_role", "assigned_user_id", "parent_task_id"):
        op.create_index(f"ix_tasks_{column}", "tasks", [column])

    op.create_table(
        "task_templates",
        _uuid("id", primary_key=True),
        sa.Column("stage", sa.String(length=40), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("assigned_role", sa.String(length=40), nullable=True),
        sa.Column("due_offset_days", sa.Integer(), nullable=False, server_default=sa.text("1")),
    )
    op.create_index("ix_task_templates_stage", "task_templates", ["stage"])

    op.create_table(
        "client_documents",
        _uuid("id", primary_key=True),
        _uuid("client_id", sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("storage_path", sa.String(length=1024), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("content_type", sa.String(length=255), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("folder", sa.String(length=120), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        _uuid("uploaded_by_id", sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _created_at(),
    )
    op.create_index("ix_client_documents_client_id", "client_documents", ["client_id"])

    op.create_table(
        "task_attachments",
        _uuid("id", primary_key=True),
        _uuid("task_id", sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("purpose", sa.String(length=20), nullable=False, server_default="PROOF"),
        sa.Column("storage_path", sa.String(length=1024), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("content_type", sa.String(length=255), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        _uuid("uploaded_by_id", sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _uuid("client_document_id", sa.ForeignKey("client_documents.id", ondelete="SET NULL"), nullable=True),
        _created_at(),
        sa.CheckConstraint("purpose IN ('PROOF', 'OTHER')", name="ck_task_attachments_purpose"),
        sa.CheckConstraint("size_bytes >= 0", name="ck_task_attachments_size_nonneg"),
    )
    op.create_index("ix_task_attachments_task_id", "task_attachments", ["task_id"])

    op.create_table(
        "pipeline_notes",
        _uuid("id", primary_key=True),
        _uuid("loan_id", sa.ForeignKey("loans.id", ondelete="CASCADE"), nullable=False),
        _uuid("user_id", sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_pipeline_notes_loan_id", "pipeline_notes", ["loan_id"])

    op.create_table(
        "external_users",
        _uuid("id", primary_key=True),
        sa.Column("provider", sa.String(length=40), nullable=False, server_default="LEAD_MAILBOX"),
        sa.Column("external_id", sa.String(length=255), nullable=False),
        _uuid("user_id", sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("provider", "external_id", name="uq_external_users_provider_external"),
        sa.CheckConstraint("provider IN ('LEAD_MAILBOX')", name="ck_external_users_provider"),
    )
    op.create_index("ix_external_users_user_id", "external_users", ["user_id"])

    op.create_table(
        "lead_mailbox_leads",
        _uuid("id", primary_key=True),
        sa.Column("lead_id", sa.String(length=255), nullable=False, unique=True),
        _uuid("user_id", sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _uuid("loan_id", sa.ForeignKey("loans.id", ondelete="SET NULL"), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "audit_logs",
        _uuid("id", primary_key=True),
        _uuid("actor_id", sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _uuid("loan_id", sa.ForeignKey("loans.id", ondelete="CASCADE"), nullable=True),
        sa.Column("action", sa.String(length=120), nullable=False),
        sa.Column("resource_type", sa.String(length=80), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("summary", sa.String(length=500), nullable=True),
        _created_at(),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_loan_id", "audit_logs", ["loan_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])

    op.create_table(
        "invite_tokens",
        _uuid("id", primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=40), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False, unique=True),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("used_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _uuid("created_by_id", sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _created_at(),
    )
    op.create_index("ix_invite_tokens_email", "invite_tokens", ["email"])

    op.create_table(
        "password_reset_tokens",
        _uuid("id", primary_key=True),
        _uuid("user_id", sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False, unique=True),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("used_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_password_reset_tokens_user_id", "password_reset_tokens", ["user_id"])


def downgrade() -> None:
    for table in (
        "password_reset_tokens",
        "invite_tokens",
        "audit_logs",
        "lead_mailbox_leads",
        "external_users",
        "pipeline_notes",
        "task_attachments",
        "client_documents",
        "task_templates",
        "tasks",
        "loans",
        "clients",
        "pipeline_stages",
        "users",
    ):
        op.drop_table(table)
