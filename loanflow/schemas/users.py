from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from loanflow.core.permissions import UserRole


class UserOut(BaseModel):
    id: UUID
    name: str
    email: EmailStr
    role: UserRole
    active: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class UserCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    role: UserRole
    password: str = Field(min_length=1)


class UserRoleUpdateRequest(BaseModel):
    role: UserRole


class UserStatusUpdateRequest(BaseModel):
    active: bool


class UserPasswordResetRequest(BaseModel):
    password: str = Field(min_length=1)


class InviteRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    role: UserRole


class InviteOut(BaseModel):
    id: UUID
    email: EmailStr
    name: str
    role: UserRole
    expires_at: datetime
    used_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True
