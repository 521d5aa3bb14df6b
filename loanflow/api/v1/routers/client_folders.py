from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.schemas.clients import ClientDocumentFinalize, ClientDocumentUploadRequest
from loanflow.schemas.common import ActionResult
from loanflow.services import client_folders as client_folders_service
from loanflow.services.actions import run_action

router = APIRouter(tags=["clients"])


@router.get("/clients/pipeline", response_model=ActionResult)
async def my_pipeline_clients(
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: client_folders_service.get_my_pipeline_clients(db, caller),
        failure_message="Failed to load clients",
    )


@router.get("/loans/{loan_id}/client-folder", response_model=ActionResult)
async def client_folder(
    loan_id: UUID,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: client_folders_service.get_client_folder_for_loan(db, caller, loan_id),
        failure_message="Failed to load client folder",
    )


@router.post("/loans/{loan_id}/client-folder/upload-url", response_model=ActionResult)
async def client_document_upload_url(
    loan_id: UUID,
    payload: ClientDocumentUploadRequest,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: client_folders_service.create_client_document_upload_url(
            db, caller, loan_id, payload.filename, payload.content_type
        ),
        failure_message="Failed to create upload URL",
    )


@router.post("/clients/{client_id}/documents", response_model=ActionResult)
async def finalize_client_document(
    client_id: UUID,
    payload: ClientDocumentFinalize,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: client_folders_service.finalize_client_document(db, caller, client_id, payload),
        failure_message="Failed to save document",
    )


@router.get("/client-documents/{document_id}/download-url", response_model=ActionResult)
async def client_document_download_url(
    document_id: UUID,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: client_folders_service.get_client_document_download_url(db, caller, document_id),
        failure_message="Failed to create download URL",
    )
