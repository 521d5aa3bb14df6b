from __future__ import annotations

import logging
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import NotFound, ValidationFailed
from loanflow.core.settings import settings
from loanflow.models.loan import Loan
from loanflow.models.task import Task
from loanflow.models.task_attachment import TaskAttachment
from loanflow.schemas.attachments import (
    DownloadUrlOut,
    FinalizeAttachmentRequest,
    TaskAttachmentOut,
    TaskAttachmentPurpose,
    UploadUrlOut,
)
from loanflow.services import authz
from loanflow.services.audit import record_audit_log
from loanflow.services.storage.key_generator import KeyGenerator
from loanflow.services.storage.service import (
    client_documents_adapter,
    signed_url_ttl,
    task_attachments_adapter,
)

logger = logging.getLogger(__name__)

TASK_PREFIX = "tasks"


def clamp_size(value: int | float | None) -> int:
    if value is None:
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError, OverflowError):
        return 0


async def _authorized_task(db: AsyncSession, principal: deps.Principal, task_id: UUID) -> Task:
    result = await db.execute(
        select(Task, Loan.loan_officer_id)
        .join(Loan, Loan.id == Task.loan_id)
        .where(Task.id == task_id)
    )
    row = result.first()
    if row is None:
        raise NotFound("Task not found.")
    task, loan_owner_id = row[0], row[1]
    authz.ensure_task_access(principal, task, loan_owner_id, resource_type="task_attachment")
    return task


async def create_task_attachment_upload_url(
    db: AsyncSession,
    principal: deps.Principal,
    task_id: UUID,
    purpose: TaskAttachmentPurpose,
    filename: str,
    content_type: str = "application/octet-stream",
) -> UploadUrlOut:
    """First phase of an upload: mint a signed PUT URL under the task's prefix."""
    task = await _authorized_task(db, principal, task_id)
    authz.ensure_upload_purpose(task, purpose)

    adapter = task_attachments_adapter()
    storage_path = KeyGenerator.task_attachment_key(task.id, filename)
    signed = await adapter.generate_upload_url(storage_path, content_type)
    return UploadUrlOut(
        upload_url=signed["upload_url"],
        method=signed.get("method", "PUT"),
        headers=signed.get("headers") or {},
        storage_path=storage_path,
        bucket=settings.task_attachments_bucket,
    )


async def finalize_task_attachment(
    db: AsyncSession,
    principal: deps.Principal,
    task_id: UUID,
    payload: FinalizeAttachmentRequest,
    *,
    client_document_id: UUID | None = None,
) -> TaskAttachmentOut:
    task = await _authorized_task(db, principal, task_id)
    authz.ensure_upload_purpose(task, payload.purpose)
    if not KeyGenerator.belongs_to(TASK_PREFIX, task.id, payload.storage_path):
        raise ValidationFailed("Storage path does not belong to this task.")

    attachment = TaskAttachment(
        id=uuid4(),
        task_id=task.id,
        purpose=payload.purpose.value,
        storage_path=payload.storage_path,
        filename=payload.filename,
        content_type=payload.content_type,
        size_bytes=clamp_size(payload.size_bytes),
        uploaded_by_id=principal.id,
        client_document_id=client_document_id,
    )
    db.add(attachment)
    record_audit_log(
        db,
        actor_id=principal.id,
        action="TASK_ATTACHMENT_ADDED",
        resource_type="task_attachment",
        resource_id=attachment.id,
        loan_id=task.loan_id,
        details={"task_id": task.id, "purpose": attachment.purpose, "filename": attachment.filename},
    )
    await db.commit()
    return TaskAttachmentOut.model_validate(attachment)


async def get_task_attachment_download_url(
    db: AsyncSession,
    principal: deps.Principal,
    attachment_id: UUID,
) -> DownloadUrlOut:
    result = await db.execute(select(TaskAttachment).where(TaskAttachment.id == attachment_id))
    attachment = result.scalar_one_or_none()
    if attachment is None:
        raise NotFound("Attachment not found.")
    try:
        await _authorized_task(db, principal, attachment.task_id)
    except NotFound:
        raise NotFound("Attachment not found.") from None

    ttl = signed_url_ttl()
    # Linked client documents still live in the client documents bucket.
    if attachment.client_document_id is not None:
        adapter = client_documents_adapter()
    else:
        adapter = task_attachments_adapter()
    url = await adapter.generate_download_url(attachment.storage_path, ttl)
    return DownloadUrlOut(url=url, expires_in=ttl)


async def list_task_attachments(
    db: AsyncSession,
    principal: deps.Principal,
    task_id: UUID,
) -> list[TaskAttachmentOut]:
    task = await _authorized_task(db, principal, task_id)
    result = await db.execute(
        select(TaskAttachment)
        .where(TaskAttachment.task_id == task.id)
        .order_by(TaskAttachment.created_at.desc())
    )
    return [TaskAttachmentOut.model_validate(item) for item in result.scalars().all()]
