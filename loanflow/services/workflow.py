from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.core.errors import NotFound
from loanflow.models.loan import Loan
from loanflow.models.task import Task
from loanflow.models.task_template import TaskTemplate
from loanflow.schemas.loans import LoanStage
from loanflow.schemas.tasks import TaskPriority, TaskStatus, TaskWorkflowState
from loanflow.services.audit import record_audit_log

logger = logging.getLogger(__name__)

STAGE_CHANGED = "STAGE_CHANGED"


def _stage_value(stage: LoanStage | str) -> str:
    return stage.value if isinstance(stage, LoanStage) else LoanStage(stage).value


def record_stage_change(db: AsyncSession, loan: Loan, new_stage: LoanStage | str, actor_id) -> str:
    """Move ``loan`` to ``new_stage`` and stage the audit row. Returns the old stage."""
    target = _stage_value(new_stage)
    previous = loan.stage
    loan.stage = target
    record_audit_log(
        db,
        actor_id=actor_id,
        action=STAGE_CHANGED,
        resource_type="loan",
        resource_id=loan.id,
        loan_id=loan.id,
        details={"from": previous, "to": target, "message": f"Moved to {target}"},
        summary=f"Moved to {target}",
    )
    return previous


async def generate_tasks_for_stage(db: AsyncSession, loan_id, stage: LoanStage | str) -> list[Task]:
    target = _stage_value(stage)
    result = await db.execute(select(TaskTemplate).where(TaskTemplate.stage == target))
    templates = result.scalars().all()
    if not templates:
        return []

    now = datetime.now(timezone.utc)
    tasks = [
        Task(
            id=uuid4(),
            loan_id=loan_id,
            title=template.title,
            description=template.description,
            status=TaskStatus.PENDING.value,
            priority=TaskPriority.NORMAL.value,
            kind=None,
            workflow_state=TaskWorkflowState.NONE.value,
            assigned_role=template.assigned_role,
            assigned_user_id=None,
            due_date=now + timedelta(days=template.due_offset_days or 0),
        )
        for template in templates
    ]
    db.add_all(tasks)
    return tasks


async def change_loan_stage(db: AsyncSession, loan_id, new_stage: LoanStage | str, actor_id) -> Loan:
    """Set the loan stage, audit it and expand the stage's task templates in one commit.

    Not idempotent: repeating a transition materializes the templates again.
    """
    target = _stage_value(new_stage)
    result = await db.execute(select(Loan).where(Loan.id == loan_id))
    loan = result.scalar_one_or_none()
    if loan is None:
        raise NotFound("Loan not found.")

    try:
        previous = record_stage_change(db, loan, target, actor_id)
        tasks = await generate_tasks_for_stage(db, loan.id, target)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Loan %s moved %s -> %s; %d task(s) generated", loan.id, previous, target, len(tasks)
    )
    return loan
