from __future__ import annotations

import logging
from collections import defaultdict
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import NotFound, ValidationFailed
from loanflow.models.loan import Loan
from loanflow.models.pipeline_stage import PipelineStage
from loanflow.models.task import Task
from loanflow.models.task_attachment import TaskAttachment
from loanflow.models.user import User
from loanflow.schemas.attachments import TaskAttachmentOut
from loanflow.schemas.team import (
    MemberDetailsOut,
    MemberLoanOut,
    MemberTaskOut,
    ReassignLoansResult,
    TeamMemberOut,
)
from loanflow.services.audit import record_audit_log

logger = logging.getLogger(__name__)

UNASSIGNED_STAGE = "Unassigned"


def _member_out(user: User, loan_count: int = 0, task_count: int = 0) -> TeamMemberOut:
    return TeamMemberOut(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        active=user.active,
        loan_count=loan_count or 0,
        task_count=task_count or 0,
        created_at=user.created_at,
    )


async def get_team_members(db: AsyncSession) -> list[TeamMemberOut]:
    loan_counts = (
        select(Loan.loan_officer_id.label("user_id"), func.count(Loan.id).label("loan_count"))
        .group_by(Loan.loan_officer_id)
        .subquery()
    )
    task_counts = (
        select(Task.assigned_user_id.label("user_id"), func.count(Task.id).label("task_count"))
        .where(Task.assigned_user_id.is_not(None))
        .group_by(Task.assigned_user_id)
        .subquery()
    )
    result = await db.execute(
        select(User, loan_counts.c.loan_count, task_counts.c.task_count)
        .outerjoin(loan_counts, loan_counts.c.user_id == User.id)
        .outerjoin(task_counts, task_counts.c.user_id == User.id)
        .order_by(User.name.asc())
    )
    return [_member_out(user, loans, tasks) for user, loans, tasks in result.all()]


async def get_member_details(db: AsyncSession, user_id: UUID) -> MemberDetailsOut:
    user_result = await db.execute(select(User).where(User.id == user_id))
    user = user_result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found.")

    loans_result = await db.execute(
        select(Loan, PipelineStage.name)
        .join(PipelineStage, PipelineStage.id == Loan.pipeline_stage_id, isouter=True)
        .where(Loan.loan_officer_id == user.id)
        .order_by(Loan.updated_at.desc())
    )
    loans = [
        MemberLoanOut(
            id=loan.id,
            loan_number=loan.loan_number,
            borrower_name=loan.borrower_name,
            amount=loan.amount,
            stage=stage_name or UNASSIGNED_STAGE,
            updated_at=loan.updated_at,
        )
        for loan, stage_name in loans_result.all()
    ]

    tasks_result = await db.execute(
        select(Task, Loan.loan_number, Loan.borrower_name)
        .join(Loan, Loan.id == Task.loan_id)
        .where(Task.assigned_user_id == user.id)
        .order_by(Task.created_at.desc())
    )
    task_rows = tasks_result.all()
    attachments: dict[UUID, list[TaskAttachmentOut]] = defaultdict(list)
    task_ids = [task.id for task, _, _ in task_rows]
    if task_ids:
        attachments_result = await db.execute(
            select(TaskAttachment)
            .where(TaskAttachment.task_id.in_(task_ids))
            .order_by(TaskAttachment.created_at.desc())
        )
        for attachment in attachments_result.scalars().all():
            attachments[attachment.task_id].append(TaskAttachmentOut.model_validate(attachment))

    tasks = []
    for task, loan_number, borrower_name in task_rows:
        item = MemberTaskOut.model_validate(task)
        item.loan_number = loan_number
        item.borrower_name = borrower_name
        item.attachments = attachments.get(task.id, [])
        tasks.append(item)

    return MemberDetailsOut(member=_member_out(user, len(loans), len(tasks)), loans=loans, tasks=tasks)


async def reassign_loans(
    db: AsyncSession,
    principal: deps.Principal,
    from_user_id: UUID | None,
    to_user_id: UUID | None,
) -> ReassignLoansResult:
    """Move every loan owned by ``from_user_id`` to ``to_user_id``."""
    if not from_user_id or not to_user_id:
        raise ValidationFailed("Both users are required.")
    if from_user_id == to_user_id:
        raise ValidationFailed("Choose two different users.")
    target_result = await db.execute(select(User).where(User.id == to_user_id))
    target = target_result.scalar_one_or_none()
    if target is None or not target.active:
        raise NotFound("Target user not found.")

    result = await db.execute(
        update(Loan)
        .where(Loan.loan_officer_id == from_user_id)
        .values(loan_officer_id=to_user_id, pipeline_stage_id=None)
    )
    reassigned = result.rowcount or 0
    record_audit_log(
        db,
        actor_id=principal.id,
        action="LOANS_REASSIGNED",
        resource_type="user",
        resource_id=from_user_id,
        details={"from_user_id": from_user_id, "to_user_id": to_user_id, "count": reassigned},
    )
    await db.commit()
    logger.info("Reassigned %d loan(s) from %s to %s", reassigned, from_user_id, to_user_id)
    return ReassignLoansResult(reassigned=reassigned)
