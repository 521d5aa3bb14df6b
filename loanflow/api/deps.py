from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.core import context
from loanflow.core.permissions import Capability, UserRole, has_capability
from loanflow.core.security import decode_token
from loanflow.db.session import get_db
from loanflow.models import User


@dataclass(slots=True)
class Principal:
    """The authenticated caller, re-read from the database on every request."""

    id: UUID
    role: str
    name: str
    email: str
    view_role: str

    def can(self, capability: Capability | str) -> bool:
        return has_capability(self.role, capability)

    @property
    def is_loan_officer(self) -> bool:
        return self.role == UserRole.LOAN_OFFICER.value


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


def _resolve_view_role(role: str, requested: str | None) -> str:
    if not requested or not has_capability(role, Capability.IMPERSONATION_VIEW_AS):
        return role
    try:
        return UserRole(requested.strip().upper()).value
    except ValueError:
        return role


async def _load_principal(token: str | None, db: AsyncSession, view_as: str | None) -> Principal | None:
    if not token:
        return None
    try:
        payload = decode_token(token, expected_type="access")
    except ValueError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    try:
        user_id = UUID(str(subject))
    except ValueError:
        return None

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.active:
        return None

    view_role = _resolve_view_role(user.role, view_as)
    context.bind_principal(str(user.id), user.role, view_role)
    return Principal(
        id=user.id,
        role=user.role,
        name=user.name,
        email=user.email,
        view_role=view_role,
    )


async def get_optional_principal(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
    view_as: str | None = Header(default=None, alias="X-View-As-Role"),
) -> Principal | None:
    """Resolve the caller or ``None``; action endpoints report the failure in their body."""
    return await _load_principal(token, db, view_as)


async def get_current_principal(
    principal: Principal | None = Depends(get_optional_principal),
) -> Principal:
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_capability(capability: Capability | str):
    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.can(capability):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized.")
        return principal

    return dependency
