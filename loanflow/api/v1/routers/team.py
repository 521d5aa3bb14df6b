from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import NotAuthorized
from loanflow.core.permissions import Capability
from loanflow.schemas.common import ActionResult
from loanflow.schemas.team import MemberDetailsOut, ReassignLoansRequest, TeamMemberOut
from loanflow.services import team as team_service
from loanflow.services.actions import run_action

router = APIRouter(prefix="/team", tags=["team"])


@router.get("/members", response_model=list[TeamMemberOut])
async def list_members(
    _: deps.Principal = Depends(deps.require_capability(Capability.TEAM_MANAGE)),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[TeamMemberOut]:
    return await team_service.get_team_members(db)


@router.get("/members/{user_id}", response_model=MemberDetailsOut)
async def member_details(
    user_id: UUID,
    _: deps.Principal = Depends(deps.require_capability(Capability.TEAM_MANAGE)),
    db: AsyncSession = Depends(deps.get_db_session),
) -> MemberDetailsOut:
    return await team_service.get_member_details(db, user_id)


@router.post("/reassign", response_model=ActionResult)
async def reassign_loans(
    payload: ReassignLoansRequest,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    async def action(caller: deps.Principal):
        if not caller.can(Capability.TEAM_MANAGE):
            raise NotAuthorized()
        return await team_service.reassign_loans(db, caller, payload.from_user_id, payload.to_user_id)

    return await run_action(db, principal, action, failure_message="Failed to reassign loans")
