from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import NotAuthorized
from loanflow.core.permissions import Capability
from loanflow.schemas.common import ActionResult
from loanflow.schemas.users import (
    InviteRequest,
    UserCreateRequest,
    UserPasswordResetRequest,
    UserRoleUpdateRequest,
    UserStatusUpdateRequest,
)
from loanflow.services import users as users_service
from loanflow.services.actions import run_action

router = APIRouter(prefix="/admin", tags=["admin-users"])

FAILURE_MESSAGE = "Failed to update user"


def _admin(action):
    """Gate a user-management action on the ``users.manage`` capability."""

    async def guarded(principal: deps.Principal):
        if not principal.can(Capability.USERS_MANAGE):
            raise NotAuthorized()
        return await action(principal)

    return guarded


@router.get("/users", response_model=ActionResult)
async def list_users(
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _admin(lambda caller: users_service.list_users(db)),
        failure_message="Failed to load users",
    )


@router.post("/users", response_model=ActionResult)
async def create_user(
    payload: UserCreateRequest,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _admin(
            lambda caller: users_service.create_user(
                db,
                caller,
                name=payload.name,
                email=payload.email,
                role=payload.role,
                password=payload.password,
            )
        ),
        failure_message="Failed to create user",
    )


@router.patch("/users/{user_id}/role", response_model=ActionResult)
async def update_role(
    user_id: UUID,
    payload: UserRoleUpdateRequest,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _admin(lambda caller: users_service.update_user_role(db, caller, user_id, payload.role)),
        failure_message=FAILURE_MESSAGE,
    )


@router.patch("/users/{user_id}/status", response_model=ActionResult)
async def update_status(
    user_id: UUID,
    payload: UserStatusUpdateRequest,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _admin(lambda caller: users_service.update_user_status(db, caller, user_id, payload.active)),
        failure_message=FAILURE_MESSAGE,
    )


@router.post("/users/{user_id}/password", response_model=ActionResult)
async def reset_password(
    user_id: UUID,
    payload: UserPasswordResetRequest,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _admin(lambda caller: users_service.reset_user_password(db, caller, user_id, payload.password)),
        failure_message="Failed to reset password",
    )


@router.delete("/users/{user_id}", response_model=ActionResult)
async def delete_user(
    user_id: UUID,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _admin(lambda caller: users_service.delete_user(db, caller, user_id)),
        failure_message="Failed to delete user",
    )


@router.get("/invites", response_model=ActionResult)
async def list_invites(
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _admin(lambda caller: users_service.list_invites(db)),
        failure_message="Failed to load invites",
    )


@router.post("/invites", response_model=ActionResult)
async def invite_user(
    payload: InviteRequest,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _admin(
            lambda caller: users_service.invite_user(
                db, caller, name=payload.name, email=payload.email, role=payload.role
            )
        ),
        failure_message="Failed to send invite",
    )


@router.post("/invites/{invite_id}/resend", response_model=ActionResult)
async def resend_invite(
    invite_id: UUID,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _admin(lambda caller: users_service.resend_invite(db, caller, invite_id)),
        failure_message="Failed to resend invite",
    )


@router.delete("/invites/{invite_id}", response_model=ActionResult)
async def delete_invite(
    invite_id: UUID,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _admin(lambda caller: users_service.delete_invite(db, caller, invite_id)),
        failure_message="Failed to delete invite",
    )
