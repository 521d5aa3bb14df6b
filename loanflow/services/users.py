"""User administration, invitations and password resets.

Raw invite and reset tokens only ever exist in the emailed link; the database
keeps their SHA-256 digests.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import NotFound, UpstreamFailure, ValidationFailed
from loanflow.core.permissions import UserRole
from loanflow.core.security import generate_token, get_password_hash, hash_token
from loanflow.core.settings import settings
from loanflow.models.tokens import InviteToken, PasswordResetToken
from loanflow.models.user import User
from loanflow.schemas.users import InviteOut, UserOut
from loanflow.services import email as email_service
from loanflow.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

INVALID_INVITE_MESSAGE = "Invite is invalid or expired."
INVALID_RESET_MESSAGE = "Reset link is invalid or expired."
DUPLICATE_EMAIL_MESSAGE = "A user with this email already exists."

USER_SNAPSHOT_EXCLUDE = ["password_hash"]


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_expired(expires_at: datetime | None, now: datetime) -> bool:
    if expires_at is None:
        return True
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= now


def _hash_password(password: str) -> str:
    cleaned = (password or "").strip()
    if not cleaned:
        raise ValidationFailed("Password cannot be empty.")
    try:
        return get_password_hash(cleaned)
    except ValueError as exc:
        raise ValidationFailed(str(exc)) from exc


def _role_value(role: UserRole | str) -> str:
    try:
        return UserRole(role).value
    except ValueError:
        raise ValidationFailed("Invalid role selected.") from None


def _link(path: str, token: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}{path}/{token}"


async def _get_user(db: AsyncSession, user_id: UUID) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found.")
    return user


async def _get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def list_users(db: AsyncSession) -> list[UserOut]:
    result = await db.execute(select(User).order_by(User.created_at.desc()))
    return [UserOut.model_validate(user) for user in result.scalars().all()]


async def create_user(
    db: AsyncSession,
    principal: deps.Principal,
    *,
    name: str,
    email: str,
    role: UserRole | str,
    password: str,
) -> UserOut:
    cleaned_name = (name or "").strip()
    cleaned_email = normalize_email(email)
    if not cleaned_name or not cleaned_email or not (password or "").strip():
        raise ValidationFailed("Name, email, and password are required.")
    role_value = _role_value(role)
    if await _get_user_by_email(db, cleaned_email) is not None:
        raise ValidationFailed(DUPLICATE_EMAIL_MESSAGE)

    user = User(
        id=uuid4(),
        name=cleaned_name,
        email=cleaned_email,
        role=role_value,
        active=True,
        password_hash=_hash_password(password),
    )
    db.add(user)
    record_audit_log(
        db,
        actor_id=principal.id,
        action="USER_CREATED",
        resource_type="user",
        resource_id=user.id,
        new_value=model_snapshot(user, exclude=USER_SNAPSHOT_EXCLUDE),
    )
    await db.commit()
    return UserOut.model_validate(user)


async def update_user_role(db: AsyncSession, principal: deps.Principal, user_id: UUID, role: UserRole | str) -> UserOut:
    role_value = _role_value(role)
    user = await _get_user(db, user_id)
    previous = user.role
    user.role = role_value
    record_audit_log(
        db,
        actor_id=principal.id,
        action="USER_ROLE_UPDATED",
        resource_type="user",
        resource_id=user.id,
        old_value={"role": previous},
        new_value={"role": role_value},
    )
    await db.commit()
    return UserOut.model_validate(user)


async def update_user_status(db: AsyncSession, principal: deps.Principal, user_id: UUID, active: bool) -> UserOut:
    if not active and str(user_id) == str(principal.id):
        raise ValidationFailed("You cannot deactivate your own account.")
    user = await _get_user(db, user_id)
    previous = user.active
    user.active = bool(active)
    record_audit_log(
        db,
        actor_id=principal.id,
        action="USER_STATUS_UPDATED",
        resource_type="user",
        resource_id=user.id,
        old_value={"active": previous},
        new_value={"active": user.active},
    )
    await db.commit()
    return UserOut.model_validate(user)


async def reset_user_password(db: AsyncSession, principal: deps.Principal, user_id: UUID, password: str) -> None:
    password_hash = _hash_password(password)
    user = await _get_user(db, user_id)
    user.password_hash = password_hash
    record_audit_log(
        db,
        actor_id=principal.id,
        action="USER_PASSWORD_RESET",
        resource_type="user",
        resource_id=user.id,
    )
    await db.commit()


async def delete_user(db: AsyncSession, principal: deps.Principal, user_id: UUID) -> UserOut:
    """Soft delete: the row stays so loans and audit history keep their references."""
    if str(user_id) == str(principal.id):
        raise ValidationFailed("You cannot delete your own account.")
    user = await _get_user(db, user_id)
    user.active = False
    record_audit_log(
        db,
        actor_id=principal.id,
        action="USER_DELETED",
        resource_type="user",
        resource_id=user.id,
        old_value=model_snapshot(user, exclude=USER_SNAPSHOT_EXCLUDE),
    )
    await db.commit()
    return UserOut.model_validate(user)


async def _send_or_rollback(db: AsyncSession, send, *args) -> None:
    try:
        await send(*args)
    except (email_service.EmailConfigurationError, email_service.EmailDeliveryError) as exc:
        logger.exception("Email delivery failed")
        await db.rollback()
        raise UpstreamFailure("Failed to send email.") from exc


async def invite_user(
    db: AsyncSession,
    principal: deps.Principal,
    *,
    name: str,
    email: str,
    role: UserRole | str,
) -> InviteOut:
    """Replace any open invite for ``email`` with a fresh one and email the link."""
    cleaned_name = (name or "").strip()
    cleaned_email = normalize_email(email)
    if not cleaned_name or not cleaned_email:
        raise ValidationFailed("Name and email are required.")
    role_value = _role_value(role)
    if await _get_user_by_email(db, cleaned_email) is not None:
        raise ValidationFailed(DUPLICATE_EMAIL_MESSAGE)

    open_result = await db.execute(
        select(InviteToken).where(InviteToken.email == cleaned_email, InviteToken.used_at.is_(None))
    )
    for stale in open_result.scalars().all():
        await db.delete(stale)

    raw_token, token_hash = generate_token()
    invite = InviteToken(
        id=uuid4(),
        email=cleaned_email,
        name=cleaned_name,
        role=role_value,
        token_hash=token_hash,
        expires_at=_now() + timedelta(hours=settings.invite_token_ttl_hours),
        created_by_id=principal.id,
    )
    db.add(invite)
    record_audit_log(
        db,
        actor_id=principal.id,
        action="USER_INVITED",
        resource_type="invite",
        resource_id=invite.id,
        details={"email": cleaned_email, "role": role_value},
    )
    await db.flush()
    await _send_or_rollback(
        db, email_service.send_invite_email, cleaned_email, cleaned_name, _link("/auth/invite", raw_token)
    )
    await db.commit()
    return InviteOut.model_validate(invite)


async def resend_invite(db: AsyncSession, principal: deps.Principal, invite_id: UUID) -> InviteOut:
    result = await db.execute(select(InviteToken).where(InviteToken.id == invite_id))
    invite = result.scalar_one_or_none()
    if invite is None:
        raise NotFound("Invite not found.")
    if invite.used_at is not None:
        raise ValidationFailed("Invite has already been used.")

    raw_token, token_hash = generate_token()
    invite.token_hash = token_hash
    invite.expires_at = _now() + timedelta(hours=settings.invite_token_ttl_hours)
    record_audit_log(
        db,
        actor_id=principal.id,
        action="USER_INVITE_RESENT",
        resource_type="invite",
        resource_id=invite.id,
        details={"email": invite.email},
    )
    await db.flush()
    await _send_or_rollback(
        db, email_service.send_invite_email, invite.email, invite.name, _link("/auth/invite", raw_token)
    )
    await db.commit()
    return InviteOut.model_validate(invite)


async def delete_invite(db: AsyncSession, principal: deps.Principal, invite_id: UUID) -> None:
    result = await db.execute(select(InviteToken).where(InviteToken.id == invite_id))
    invite = result.scalar_one_or_none()
    if invite is None:
        raise NotFound("Invite not found.")
    record_audit_log(
        db,
        actor_id=principal.id,
        action="USER_INVITE_DELETED",
        resource_type="invite",
        resource_id=invite.id,
        details={"email": invite.email},
    )
    await db.delete(invite)
    await db.commit()


async def list_invites(db: AsyncSession) -> list[InviteOut]:
    result = await db.execute(select(InviteToken).order_by(InviteToken.created_at.desc()))
    return [InviteOut.model_validate(invite) for invite in result.scalars().all()]


async def accept_invite(db: AsyncSession, raw_token: str, password: str) -> UserOut:
    """Create the invited user. Invalid, used or expired tokens write nothing."""
    result = await db.execute(select(InviteToken).where(InviteToken.token_hash == hash_token(raw_token or "")))
    invite = result.scalar_one_or_none()
    now = _now()
    if invite is None or invite.used_at is not None or _is_expired(invite.expires_at, now):
        raise ValidationFailed(INVALID_INVITE_MESSAGE)
    if await _get_user_by_email(db, invite.email) is not None:
        raise ValidationFailed(DUPLICATE_EMAIL_MESSAGE)

    user = User(
        id=uuid4(),
        name=invite.name,
        email=invite.email,
        role=invite.role,
        active=True,
        password_hash=_hash_password(password),
    )
    db.add(user)
    invite.used_at = now
    record_audit_log(
        db,
        actor_id=user.id,
        action="USER_INVITE_ACCEPTED",
        resource_type="user",
        resource_id=user.id,
        details={"invite_id": invite.id},
    )
    await db.commit()
    return UserOut.model_validate(user)


async def request_password_reset(db: AsyncSession, email: str) -> None:
    """Email a reset link to an active user. Callers always report success."""
    user = await _get_user_by_email(db, normalize_email(email))
    if user is None or not user.active:
        return

    raw_token, token_hash = generate_token()
    db.add(
        PasswordResetToken(
            id=uuid4(),
            user_id=user.id,
            token_hash=token_hash,
            expires_at=_now() + timedelta(minutes=settings.password_reset_token_ttl_minutes),
        )
    )
    await db.flush()
    try:
        await email_service.send_password_reset_email(
            user.email, user.name, _link("/auth/reset", raw_token)
        )
    except (email_service.EmailConfigurationError, email_service.EmailDeliveryError):
        logger.exception("Password reset email failed for user %s", user.id)
        await db.rollback()
        return
    await db.commit()


async def reset_password_with_token(db: AsyncSession, raw_token: str, password: str) -> None:
    result = await db.execute(
        select(PasswordResetToken).where(PasswordResetToken.token_hash == hash_token(raw_token or ""))
    )
    reset = result.scalar_one_or_none()
    now = _now()
    if reset is None or reset.used_at is not None or _is_expired(reset.expires_at, now):
        raise ValidationFailed(INVALID_RESET_MESSAGE)
    password_hash = _hash_password(password)
    user_result = await db.execute(select(User).where(User.id == reset.user_id))
    user = user_result.scalar_one_or_none()
    if user is None or not user.active:
        raise ValidationFailed(INVALID_RESET_MESSAGE)

    user.password_hash = password_hash
    reset.used_at = now
    record_audit_log(
        db,
        actor_id=user.id,
        action="USER_PASSWORD_RESET_COMPLETED",
        resource_type="user",
        resource_id=user.id,
    )
    await db.commit()
