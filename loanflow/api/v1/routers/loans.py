import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import PortalError
from loanflow.models.loan import Loan
from loanflow.schemas.loans import LoanOut, StageChangeRequest
from loanflow.schemas.tasks import TaskOut
from loanflow.services import authz
from loanflow.services import tasks as tasks_service
from loanflow.services.workflow import change_loan_stage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/loans", tags=["loans"])


@router.post("/{loan_id}/stage", response_model=LoanOut)
async def update_loan_stage(
    loan_id: UUID,
    payload: StageChangeRequest,
    principal: deps.Principal = Depends(deps.get_current_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanOut:
    """Move a loan to a new coarse stage and expand that stage's task templates."""
    if payload.user_id is not None and payload.user_id != principal.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized.")

    result = await db.execute(select(Loan).where(Loan.id == loan_id))
    loan = result.scalar_one_or_none()
    if loan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Loan not found.")
    authz.ensure_access(principal, "loan", owner_id=loan.loan_officer_id)

    try:
        updated = await change_loan_stage(db, loan.id, payload.stage, principal.id)
    except PortalError:
        raise
    except Exception as exc:
        logger.exception("Stage change failed for loan %s", loan_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update stage",
        ) from exc
    return LoanOut.model_validate(updated)


@router.get("/{loan_id}/tasks", response_model=list[TaskOut])
async def list_loan_tasks(
    loan_id: UUID,
    principal: deps.Principal = Depends(deps.get_current_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[TaskOut]:
    return await tasks_service.list_loan_tasks(db, principal, loan_id)
