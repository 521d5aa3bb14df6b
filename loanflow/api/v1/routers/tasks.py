from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.schemas.common import ActionResult
from loanflow.schemas.tasks import (
    DisclosureFiguresReview,
    LoanOfficerResponsePayload,
    RequestInfoPayload,
    SubmissionTaskCreate,
    TaskStatus,
    TaskStatusUpdate,
)
from loanflow.services import tasks as tasks_service
from loanflow.services.actions import run_action

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=ActionResult)
async def list_my_tasks(
    status: TaskStatus | None = Query(default=None),
    include_completed: bool = Query(default=False),
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: tasks_service.list_tasks(
            db, caller, status=status, include_completed=include_completed
        ),
        failure_message="Failed to load tasks",
    )


@router.get("/all", response_model=ActionResult)
async def list_all_tasks(
    status: TaskStatus | None = Query(default=None),
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: tasks_service.list_all_tasks(db, caller, status=status),
        failure_message="Failed to load tasks",
    )


@router.post("/submissions", response_model=ActionResult)
async def create_submission(
    payload: SubmissionTaskCreate,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: tasks_service.create_submission_task(db, caller, payload),
        failure_message="Failed to create submission",
    )


@router.patch("/{task_id}/status", response_model=ActionResult)
async def update_status(
    task_id: UUID,
    payload: TaskStatusUpdate,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: tasks_service.update_task_status(db, caller, task_id, payload.status),
        failure_message="Failed to update task status",
    )


@router.post("/{task_id}/request-info", response_model=ActionResult)
async def request_info(
    task_id: UUID,
    payload: RequestInfoPayload,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: tasks_service.request_info_from_loan_officer(
            db, caller, task_id, payload.reason, payload.message
        ),
        failure_message="Failed to request info from loan officer",
    )


@router.post("/{task_id}/respond", response_model=ActionResult)
async def respond(
    task_id: UUID,
    payload: LoanOfficerResponsePayload,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: tasks_service.respond_to_disclosure_request(db, caller, task_id, payload.message),
        failure_message="Failed to record response",
    )


@router.post("/{task_id}/review", response_model=ActionResult)
async def review_figures(
    task_id: UUID,
    payload: DisclosureFiguresReview,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: tasks_service.review_initial_disclosure_figures(
            db, caller, task_id, payload.decision, payload.message
        ),
        failure_message="Failed to record review",
    )


@router.delete("/{task_id}", response_model=ActionResult)
async def delete_task(
    task_id: UUID,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        lambda caller: tasks_service.delete_task(db, caller, task_id),
        failure_message="Failed to delete task",
    )
