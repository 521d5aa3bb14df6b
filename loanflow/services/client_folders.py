"""Per-loan-officer client folders and their documents.

A client is created lazily the first time a loan's folder is opened and is
shared by every loan of the same officer with the same borrower phone or
Lead Mailbox lead id.
"""

from __future__ import annotations

import logging
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import NotAuthorized, NotFound, ValidationFailed
from loanflow.core.settings import settings
from loanflow.models.client import Client, ClientDocument
from loanflow.models.external_user import LeadMailboxLead
from loanflow.models.loan import Loan
from loanflow.models.task import Task
from loanflow.models.task_attachment import TaskAttachment
from loanflow.schemas.attachments import DownloadUrlOut, TaskAttachmentOut, TaskAttachmentPurpose
from loanflow.schemas.clients import (
    ClientDocumentFinalize,
    ClientDocumentOut,
    ClientDocumentUploadOut,
    ClientFolderOut,
    ClientOut,
    PipelineClientOut,
)
from loanflow.services import authz
from loanflow.services.attachments import clamp_size
from loanflow.services.audit import record_audit_log
from loanflow.services.storage.key_generator import KeyGenerator
from loanflow.services.storage.service import client_documents_adapter, signed_url_ttl
from loanflow.utils.parsing import clean_text

logger = logging.getLogger(__name__)

CLIENT_PREFIX = "clients"
FOLDER_DOCUMENT_LIMIT = 50
PIPELINE_CLIENT_LIMIT = 100


async def _get_loan(db: AsyncSession, loan_id: UUID) -> Loan:
    result = await db.execute(select(Loan).where(Loan.id == loan_id))
    loan = result.scalar_one_or_none()
    if loan is None:
        raise NotFound("Loan not found.")
    return loan


async def _get_client(db: AsyncSession, client_id: UUID) -> Client:
    result = await db.execute(select(Client).where(Client.id == client_id))
    client = result.scalar_one_or_none()
    if client is None:
        raise NotFound("Client not found.")
    return client


async def _find_client(db: AsyncSession, owner_id: UUID, phone: str | None, lead_id: str | None) -> Client | None:
    if phone:
        result = await db.execute(
            select(Client).where(Client.owner_id == owner_id, Client.phone == phone)
        )
        client = result.scalar_one_or_none()
        if client is not None:
            return client
    if lead_id:
        result = await db.execute(
            select(Client).where(Client.owner_id == owner_id, Client.lead_id == lead_id)
        )
        return result.scalar_one_or_none()
    return None


async def ensure_client_for_loan(db: AsyncSession, loan_id: UUID) -> UUID:
    """Return the loan's client id, linking or creating the client when missing."""
    loan = await _get_loan(db, loan_id)
    if loan.client_id is not None:
        return loan.client_id

    lead_result = await db.execute(
        select(LeadMailboxLead.lead_id).where(LeadMailboxLead.loan_id == loan.id).limit(1)
    )
    lead_id = lead_result.scalar_one_or_none()
    owner_id = loan.loan_officer_id
    phone = clean_text(loan.borrower_phone)

    client = await _find_client(db, owner_id, phone, lead_id)
    if client is None:
        client = Client(
            id=uuid4(),
            owner_id=owner_id,
            display_name=loan.borrower_name,
            phone=phone,
            email=clean_text(loan.borrower_email),
            lead_id=lead_id,
        )
        db.add(client)
    client_id = client.id
    try:
        await db.flush()
        loan.client_id = client_id
        await db.commit()
    except IntegrityError:
        # A concurrent request created the same client; link to theirs.
        await db.rollback()
        existing = await _find_client(db, owner_id, phone, lead_id)
        if existing is None:
            raise
        client_id = existing.id
        loan = await _get_loan(db, loan_id)
        loan.client_id = client_id
        await db.commit()
    return client_id


def _ensure_folder_access(principal: deps.Principal, owner_id: UUID) -> None:
    authz.ensure_access(principal, "client_folder", owner_id=owner_id)


async def get_client_folder_for_loan(
    db: AsyncSession,
    principal: deps.Principal,
    loan_id: UUID,
) -> ClientFolderOut:
    loan = await _get_loan(db, loan_id)
    _ensure_folder_access(principal, loan.loan_officer_id)
    client_id = await ensure_client_for_loan(db, loan.id)
    client = await _get_client(db, client_id)
    docs_result = await db.execute(
        select(ClientDocument)
        .where(ClientDocument.client_id == client_id)
        .order_by(ClientDocument.created_at.desc())
        .limit(FOLDER_DOCUMENT_LIMIT)
    )
    return ClientFolderOut(
        client=ClientOut.model_validate(client),
        documents=[ClientDocumentOut.model_validate(doc) for doc in docs_result.scalars().all()],
    )


async def get_my_pipeline_clients(db: AsyncSession, principal: deps.Principal) -> list[PipelineClientOut]:
    result = await db.execute(
        select(Loan)
        .where(Loan.loan_officer_id == principal.id)
        .order_by(Loan.updated_at.desc())
        .limit(PIPELINE_CLIENT_LIMIT)
    )
    return [
        PipelineClientOut(
            loan_id=loan.id,
            loan_number=loan.loan_number,
            borrower_name=loan.borrower_name,
            borrower_phone=loan.borrower_phone,
            borrower_email=loan.borrower_email,
            client_id=loan.client_id,
            updated_at=loan.updated_at,
        )
        for loan in result.scalars().all()
    ]


async def create_client_document_upload_url(
    db: AsyncSession,
    principal: deps.Principal,
    loan_id: UUID,
    filename: str,
    content_type: str = "application/octet-stream",
) -> ClientDocumentUploadOut:
    loan = await _get_loan(db, loan_id)
    _ensure_folder_access(principal, loan.loan_officer_id)
    client_id = await ensure_client_for_loan(db, loan.id)

    storage_path = KeyGenerator.client_document_key(client_id, filename)
    signed = await client_documents_adapter().generate_upload_url(storage_path, content_type)
    return ClientDocumentUploadOut(
        client_id=client_id,
        upload_url=signed["upload_url"],
        method=signed.get("method", "PUT"),
        headers=signed.get("headers") or {},
        storage_path=storage_path,
        bucket=settings.client_documents_bucket,
    )


async def finalize_client_document(
    db: AsyncSession,
    principal: deps.Principal,
    client_id: UUID,
    payload: ClientDocumentFinalize,
) -> ClientDocumentOut:
    client = await _get_client(db, client_id)
    authz.ensure_access(principal, "client_document", owner_id=client.owner_id)
    if not KeyGenerator.belongs_to(CLIENT_PREFIX, client.id, payload.storage_path):
        raise ValidationFailed("Storage path does not belong to this client.")

    document = ClientDocument(
        id=uuid4(),
        client_id=client.id,
        storage_path=payload.storage_path,
        filename=payload.filename,
        content_type=payload.content_type,
        size_bytes=clamp_size(payload.size_bytes),
        folder=clean_text(payload.folder),
        tags=[tag.strip() for tag in payload.tags if tag and tag.strip()],
        uploaded_by_id=principal.id,
    )
    db.add(document)
    record_audit_log(
        db,
        actor_id=principal.id,
        action="CLIENT_DOCUMENT_ADDED",
        resource_type="client_document",
        resource_id=document.id,
        details={"client_id": client.id, "filename": document.filename},
    )
    await db.commit()
    return ClientDocumentOut.model_validate(document)


async def get_client_document_download_url(
    db: AsyncSession,
    principal: deps.Principal,
    document_id: UUID,
) -> DownloadUrlOut:
    result = await db.execute(
        select(ClientDocument, Client.owner_id)
        .join(Client, Client.id == ClientDocument.client_id)
        .where(ClientDocument.id == document_id)
    )
    row = result.first()
    if row is None:
        raise NotFound("Document not found.")
    document, owner_id = row[0], row[1]
    authz.ensure_access(principal, "client_document", owner_id=owner_id)

    ttl = signed_url_ttl()
    url = await client_documents_adapter().generate_download_url(document.storage_path, ttl)
    return DownloadUrlOut(url=url, expires_in=ttl)


async def attach_client_documents_to_task(
    db: AsyncSession,
    principal: deps.Principal,
    task_id: UUID,
    document_ids: list[UUID],
    purpose: TaskAttachmentPurpose = TaskAttachmentPurpose.OTHER,
) -> list[TaskAttachmentOut]:
    """Link existing client documents to a task without copying the stored bytes."""
    result = await db.execute(
        select(Task, Loan.loan_officer_id)
        .join(Loan, Loan.id == Task.loan_id)
        .where(Task.id == task_id)
    )
    row = result.first()
    if row is None:
        raise NotFound("Task not found.")
    task, loan_owner_id = row[0], row[1]
    authz.ensure_access(principal, "task_client_documents", owner_id=loan_owner_id)
    authz.ensure_upload_purpose(task, purpose)

    ids = list(dict.fromkeys(document_ids))
    if not ids:
        return []

    docs_result = await db.execute(
        select(ClientDocument, Client.owner_id)
        .join(Client, Client.id == ClientDocument.client_id)
        .where(ClientDocument.id.in_(ids))
    )
    rows = docs_result.all()
    for _, owner_id in rows:
        if not authz.can_access(principal, "client_document", owner_id=owner_id):
            raise NotAuthorized()

    attachments = [
        TaskAttachment(
            id=uuid4(),
            task_id=task.id,
            purpose=purpose.value,
            storage_path=document.storage_path,
            filename=document.filename,
            content_type=document.content_type,
            size_bytes=document.size_bytes or 0,
            uploaded_by_id=principal.id,
            client_document_id=document.id,
        )
        for document, _ in rows
    ]
    if attachments:
        db.add_all(attachments)
        record_audit_log(
            db,
            actor_id=principal.id,
            action="CLIENT_DOCUMENTS_ATTACHED",
            resource_type="task",
            resource_id=task.id,
            loan_id=task.loan_id,
            details={"document_ids": [document.id for document, _ in rows]},
        )
        await db.commit()
    return [TaskAttachmentOut.model_validate(item) for item in attachments]
