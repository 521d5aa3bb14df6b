from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.permissions import Capability
from loanflow.schemas.loans import LoanOut
from loanflow.schemas.pipeline import (
    LoanDetailsOut,
    LoanOfficerOut,
    LoanPlacementRequest,
    PipelineBoardOut,
    PipelineImportRequest,
    PipelineImportResult,
    PipelineNoteCreate,
    PipelineNoteOut,
    PipelineStageCreate,
    PipelineStageOut,
    PipelineStageReorder,
    PipelineStageUpdate,
)
from loanflow.services import pipeline as pipeline_service

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


@router.get("/loan-officers", response_model=list[LoanOfficerOut])
async def list_loan_officers(
    _: deps.Principal = Depends(deps.require_capability(Capability.RECORDS_MANAGE_ALL)),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[LoanOfficerOut]:
    return await pipeline_service.list_loan_officers(db)


@router.get("/board", response_model=PipelineBoardOut)
async def get_board(
    owner_id: UUID | None = Query(default=None),
    principal: deps.Principal = Depends(deps.require_capability(Capability.PIPELINE_VIEW)),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PipelineBoardOut:
    board_owner = await pipeline_service.resolve_board_owner(db, principal, owner_id)
    return await pipeline_service.get_pipeline_data(db, board_owner)


@router.post("/stages", response_model=PipelineStageOut, status_code=201)
async def create_stage(
    payload: PipelineStageCreate,
    owner_id: UUID | None = Query(default=None),
    principal: deps.Principal = Depends(deps.require_capability(Capability.PIPELINE_VIEW)),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PipelineStageOut:
    board_owner = await pipeline_service.resolve_board_owner(db, principal, owner_id)
    stage = await pipeline_service.create_stage(db, board_owner, payload.name, payload.color)
    return PipelineStageOut.model_validate(stage)


@router.patch("/stages/{stage_id}", response_model=PipelineStageOut)
async def update_stage(
    stage_id: UUID,
    payload: PipelineStageUpdate,
    owner_id: UUID | None = Query(default=None),
    principal: deps.Principal = Depends(deps.require_capability(Capability.PIPELINE_VIEW)),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PipelineStageOut:
    board_owner = await pipeline_service.resolve_board_owner(db, principal, owner_id)
    stage = await pipeline_service.update_stage(
        db, board_owner, stage_id, name=payload.name, color=payload.color
    )
    return PipelineStageOut.model_validate(stage)


@router.post("/stages/reorder", response_model=list[PipelineStageOut])
async def reorder_stages(
    payload: PipelineStageReorder,
    owner_id: UUID | None = Query(default=None),
    principal: deps.Principal = Depends(deps.require_capability(Capability.PIPELINE_VIEW)),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[PipelineStageOut]:
    board_owner = await pipeline_service.resolve_board_owner(db, principal, owner_id)
    stages = await pipeline_service.reorder_stages(db, board_owner, payload.stage_ids)
    return [PipelineStageOut.model_validate(stage) for stage in stages]


@router.delete("/stages/{stage_id}")
async def delete_stage(
    stage_id: UUID,
    fallback_stage_id: UUID | None = Query(default=None),
    owner_id: UUID | None = Query(default=None),
    principal: deps.Principal = Depends(deps.require_capability(Capability.PIPELINE_VIEW)),
    db: AsyncSession = Depends(deps.get_db_session),
) -> dict:
    board_owner = await pipeline_service.resolve_board_owner(db, principal, owner_id)
    moved = await pipeline_service.delete_stage(db, board_owner, stage_id, fallback_stage_id)
    return {"deleted": str(stage_id), "loans_moved": moved}


@router.put("/loans/{loan_id}/stage", response_model=LoanOut)
async def move_loan(
    loan_id: UUID,
    payload: LoanPlacementRequest,
    principal: deps.Principal = Depends(deps.get_current_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanOut:
    loan = await pipeline_service.move_loan_to_stage(db, principal, loan_id, payload.stage_id)
    return LoanOut.model_validate(loan)


@router.get("/loans/{loan_id}", response_model=LoanDetailsOut)
async def get_loan_details(
    loan_id: UUID,
    principal: deps.Principal = Depends(deps.get_current_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanDetailsOut:
    return await pipeline_service.get_loan_details(db, principal, loan_id)


@router.post("/loans/{loan_id}/notes", response_model=PipelineNoteOut, status_code=201)
async def add_note(
    loan_id: UUID,
    payload: PipelineNoteCreate,
    principal: deps.Principal = Depends(deps.get_current_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PipelineNoteOut:
    return await pipeline_service.add_pipeline_note(db, principal, loan_id, payload.body)


@router.post("/import", response_model=PipelineImportResult)
async def import_rows(
    payload: PipelineImportRequest,
    owner_id: UUID | None = Query(default=None),
    principal: deps.Principal = Depends(deps.require_capability(Capability.PIPELINE_VIEW)),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PipelineImportResult:
    board_owner = await pipeline_service.resolve_board_owner(db, principal, owner_id)
    return await pipeline_service.import_pipeline_csv(db, board_owner, payload.rows)


@router.post("/import/csv", response_model=PipelineImportResult)
async def import_csv(
    request: Request,
    owner_id: UUID | None = Query(default=None),
    principal: deps.Principal = Depends(deps.require_capability(Capability.PIPELINE_VIEW)),
    db: AsyncSession = Depends(deps.get_db_session),
) -> PipelineImportResult:
    """Import a raw ``text/csv`` body."""
    board_owner = await pipeline_service.resolve_board_owner(db, principal, owner_id)
    text = pipeline_service.decode_pipeline_csv(await request.body())
    rows = pipeline_service.parse_pipeline_csv(text)
    return await pipeline_service.import_pipeline_csv(db, board_owner, rows)
