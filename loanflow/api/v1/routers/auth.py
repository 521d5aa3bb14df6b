from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.api.auth_utils import authenticate
from loanflow.core.limiter import limiter, login_limit
from loanflow.core.permissions import capabilities_for, sections_for
from loanflow.core.security import create_access_token
from loanflow.core.settings import settings
from loanflow.models.user import User
from loanflow.schemas.auth import (
    AcceptInviteRequest,
    LoginRequest,
    MeOut,
    PasswordResetConfirm,
    PasswordResetRequest,
    TokenResponse,
)
from loanflow.schemas.users import UserOut
from loanflow.services import users as users_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
@limiter.limit(login_limit)
async def login(
    credentials: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(deps.get_db_session),
) -> TokenResponse:
    user = await authenticate(db, credentials.email, credentials.password)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_access_token(str(user.id), role=user.role)
    return TokenResponse(access_token=token, expires_in=settings.access_token_expire_minutes * 60)


@router.get("/me", response_model=MeOut)
async def read_me(
    principal: deps.Principal = Depends(deps.get_current_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> MeOut:
    result = await db.execute(select(User).where(User.id == principal.id))
    user = result.scalar_one_or_none()
    return MeOut(
        id=principal.id,
        name=principal.name,
        email=principal.email,
        role=principal.role,
        view_role=principal.view_role,
        capabilities=capabilities_for(principal.role),
        sections=sections_for(principal.view_role),
        created_at=user.created_at if user is not None else None,
    )


@router.post("/invites/accept", response_model=UserOut)
@limiter.limit(login_limit)
async def accept_invite(
    payload: AcceptInviteRequest,
    request: Request,
    db: AsyncSession = Depends(deps.get_db_session),
) -> UserOut:
    return await users_service.accept_invite(db, payload.token, payload.password)


@router.post("/password-reset/request")
@limiter.limit(login_limit)
async def request_password_reset(
    payload: PasswordResetRequest,
    request: Request,
    db: AsyncSession = Depends(deps.get_db_session),
) -> dict:
    await users_service.request_password_reset(db, payload.email)
    return {"success": True}


@router.post("/password-reset/confirm")
@limiter.limit(login_limit)
async def confirm_password_reset(
    payload: PasswordResetConfirm,
    request: Request,
    db: AsyncSession = Depends(deps.get_db_session),
) -> dict:
    await users_service.reset_password_with_token(db, payload.token, payload.password)
    return {"success": True}
