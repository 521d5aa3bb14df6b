from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.schemas.attachments import FinalizeAttachmentRequest, UploadUrlRequest
from loanflow.schemas.clients import AttachClientDocumentsRequest
from loanflow.schemas.common import ActionResult
from loanflow.services import attachments as attachments_service
from loanflow.services import client_folders as client_folders_service
from loanflow.services.actions import run_action

router = APIRouter(tags=["attachments"])


@router.post("/tasks/{task_id}/attachments/upload-url", response_model=ActionResult)
async def create_upload_url(
    task_id: UUID,
    payload: UploadUrlRequest,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: attachments_service.create_task_attachment_upload_url(
            db, caller, task_id, payload.purpose, payload.filename, payload.content_type
        ),
        failure_message="Failed to create upload URL",
    )


@router.post("/tasks/{task_id}/attachments", response_model=ActionResult)
async def finalize_upload(
    task_id: UUID,
    payload: FinalizeAttachmentRequest,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: attachments_service.finalize_task_attachment(db, caller, task_id, payload),
        failure_message="Failed to save attachment",
    )


@router.get("/tasks/{task_id}/attachments", response_model=ActionResult)
async def list_attachments(
    task_id: UUID,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: attachments_service.list_task_attachments(db, caller, task_id),
        failure_message="Failed to load attachments",
    )


@router.post("/tasks/{task_id}/attachments/from-client-documents", response_model=ActionResult)
async def attach_client_documents(
    task_id: UUID,
    payload: AttachClientDocumentsRequest,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: client_folders_service.attach_client_documents_to_task(
            db, caller, task_id, payload.document_ids, payload.purpose
        ),
        failure_message="Failed to attach client documents",
    )


@router.get("/attachments/{attachment_id}/download-url", response_model=ActionResult)
async def download_url(
    attachment_id: UUID,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: attachments_service.get_task_attachment_download_url(db, caller, attachment_id),
        failure_message="Failed to create download URL",
    )
