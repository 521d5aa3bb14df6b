from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import NotAuthorized, NotFound, ValidationFailed
from loanflow.core.permissions import PROOF_REQUIRED_ROLES, Capability, UserRole
from loanflow.models.loan import Loan
from loanflow.models.task import Task
from loanflow.models.task_attachment import TaskAttachment
from loanflow.models.user import User
from loanflow.schemas.attachments import TaskAttachmentPurpose
from loanflow.schemas.loans import LoanStage
from loanflow.schemas.tasks import (
    VA_TASK_KINDS,
    DisclosureDecisionReason,
    DisclosureReviewDecision,
    SubmissionTaskCreate,
    SubmissionTaskCreated,
    SubmissionType,
    TaskKind,
    TaskOut,
    TaskPriority,
    TaskQueueItem,
    TaskStatus,
    TaskWorkflowState,
)
from loanflow.services import authz
from loanflow.services.audit import model_snapshot, record_audit_log
from loanflow.services.workflow import record_stage_change
from loanflow.utils.parsing import clean_text, parse_amount

logger = logging.getLogger(__name__)

SUBMISSION_DUE_HOURS = 24

PROOF_REQUIRED_MESSAGE = "Upload proof (PDF/Image) before completing this task."
REVISION_NOTE = "Revision requested by LO."

# Tasks created when QC clears, with the role that works each one.
VA_FOLLOW_UPS: list[tuple[str, TaskKind, UserRole]] = [
    ("VA: Title", TaskKind.VA_TITLE, UserRole.VA_TITLE),
    ("VA: HOI", TaskKind.VA_HOI, UserRole.VA_HOI),
    ("VA: Payoff", TaskKind.VA_PAYOFF, UserRole.VA_PAYOFF),
    ("VA: Appraisal", TaskKind.VA_APPRAISAL, UserRole.VA_APPRAISAL),
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def is_disclosure_submission_task(task: Task) -> bool:
    if task.kind == TaskKind.SUBMIT_DISCLOSURES.value:
        return True
    title = (task.title or "").lower()
    return task.assigned_role == UserRole.DISCLOSURE_SPECIALIST.value and "disclosure" in title


def is_qc_submission_task(task: Task) -> bool:
    if task.kind == TaskKind.SUBMIT_QC.value:
        return True
    title = (task.title or "").lower()
    return task.assigned_role == UserRole.QC.value and "qc" in title


def is_submission_task(task: Task) -> bool:
    return is_disclosure_submission_task(task) or is_qc_submission_task(task)


def _requires_proof(task: Task, role: str) -> bool:
    return task.kind in VA_TASK_KINDS or role in PROOF_REQUIRED_ROLES or is_submission_task(task)


async def _load_task(db: AsyncSession, task_id: UUID) -> tuple[Task, UUID | None]:
    """Fetch a task together with the id of the loan officer who owns its loan."""
    result = await db.execute(
        select(Task, Loan.loan_officer_id)
        .join(Loan, Loan.id == Task.loan_id)
        .where(Task.id == task_id)
    )
    row = result.first()
    if row is None:
        raise NotFound("Task not found.")
    return row[0], row[1]


async def _has_proof(db: AsyncSession, task_id: UUID) -> bool:
    result = await db.execute(
        select(TaskAttachment.id)
        .where(
            TaskAttachment.task_id == task_id,
            TaskAttachment.purpose == TaskAttachmentPurpose.PROOF.value,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _get_task(db: AsyncSession, task_id: UUID | None) -> Task | None:
    if task_id is None:
        return None
    result = await db.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


def _release_parent(parent: Task, child: Task, now: datetime) -> None:
    parent.status = TaskStatus.PENDING.value
    parent.workflow_state = TaskWorkflowState.READY_TO_COMPLETE.value
    if child.disclosure_reason == DisclosureDecisionReason.APPROVE_INITIAL_DISCLOSURES.value:
        parent.loan_officer_approved_at = now


async def _create_va_follow_ups(db: AsyncSession, loan_id: UUID, now: datetime) -> list[Task]:
    kinds = [kind.value for _, kind, _ in VA_FOLLOW_UPS]
    roles = [role.value for _, _, role in VA_FOLLOW_UPS]
    result = await db.execute(
        select(Task).where(
            Task.loan_id == loan_id,
            or_(Task.kind.in_(kinds), Task.assigned_role.in_(roles)),
        )
    )
    existing = result.scalars().all()
    present_kinds = {task.kind for task in existing}
    present_roles = {task.assigned_role for task in existing}

    created = [
        Task(
            id=uuid4(),
            loan_id=loan_id,
            title=title,
            status=TaskStatus.PENDING.value,
            priority=TaskPriority.NORMAL.value,
            kind=kind.value,
            workflow_state=TaskWorkflowState.NONE.value,
            assigned_role=role.value,
            due_date=now + timedelta(hours=SUBMISSION_DUE_HOURS),
        )
        for title, kind, role in VA_FOLLOW_UPS
        if kind.value not in present_kinds and role.value not in present_roles
    ]
    if created:
        db.add_all(created)
    return created


async def update_task_status(
    db: AsyncSession,
    principal: deps.Principal,
    task_id: UUID,
    new_status: TaskStatus | str,
) -> TaskOut:
    """Change a task's status and apply the completion side effects in one commit."""
    target = TaskStatus(new_status).value
    task, loan_owner_id = await _load_task(db, task_id)
    if not authz.can_access_task(principal, task, loan_owner_id):
        raise NotAuthorized("Not authorized to update this task.")

    completing = target == TaskStatus.COMPLETED.value
    if completing:
        if _requires_proof(task, principal.role) and not await _has_proof(db, task.id):
            raise ValidationFailed(PROOF_REQUIRED_MESSAGE)
        if is_submission_task(task) and task.workflow_state in (
            TaskWorkflowState.WAITING_ON_LO.value,
            TaskWorkflowState.WAITING_ON_LO_APPROVAL.value,
        ):
            raise ValidationFailed(
                "This task is waiting on Loan Officer response. It cannot be completed yet."
            )
        if (
            is_disclosure_submission_task(task)
            and task.disclosure_reason == DisclosureDecisionReason.APPROVE_INITIAL_DISCLOSURES.value
            and task.loan_officer_approved_at is None
        ):
            raise ValidationFailed(
                "Loan Officer approval is required before completing this disclosure task."
            )

    now = _now()
    before = model_snapshot(task, exclude=["submission_data"])
    task.status = target
    task.completed_at = now if completing else None
    if completing:
        task.workflow_state = TaskWorkflowState.NONE.value
        if task.kind == TaskKind.LO_NEEDS_INFO.value:
            parent = await _get_task(db, task.parent_task_id)
            if parent is not None:
                _release_parent(parent, task, now)
        if is_submission_task(task):
            loan_result = await db.execute(select(Loan).where(Loan.id == task.loan_id))
            loan = loan_result.scalar_one_or_none()
            if loan is not None:
                if is_disclosure_submission_task(task):
                    record_stage_change(db, loan, LoanStage.DISCLOSURES_SENT, principal.id)
                else:
                    await _create_va_follow_ups(db, loan.id, now)
                    record_stage_change(db, loan, LoanStage.SUBMIT_TO_UW_PREP, principal.id)

    record_audit_log(
        db,
        actor_id=principal.id,
        action="TASK_STATUS_UPDATED",
        resource_type="task",
        resource_id=task.id,
        loan_id=task.loan_id,
        old_value=before,
        new_value=model_snapshot(task, exclude=["submission_data"]),
    )
    await db.commit()
    logger.info(
        "Task %s set to %s by %s",
        task.id,
        target,
        principal.id,
        extra={"task_id": task.id, "loan_id": task.loan_id},
    )
    return TaskOut.model_validate(task)


async def _resolve_submission_officer(
    db: AsyncSession,
    principal: deps.Principal,
    requested_id: UUID | None,
) -> UUID:
    if principal.is_loan_officer:
        return principal.id
    query = select(User).where(User.role == UserRole.LOAN_OFFICER.value, User.active.is_(True))
    if requested_id is not None:
        query = query.where(User.id == requested_id)
    result = await db.execute(query.order_by(User.created_at.asc()).limit(1))
    officer = result.scalar_one_or_none()
    if officer is None:
        raise NotFound("No loan officer user found")
    return officer.id


async def create_submission_task(
    db: AsyncSession,
    principal: deps.Principal,
    payload: SubmissionTaskCreate,
) -> SubmissionTaskCreated:
    """Open a disclosure or QC submission, creating the loan when its number is new."""
    loan_number = clean_text(payload.loan_number)
    if not loan_number:
        raise ValidationFailed("Loan number is required.")
    is_qc = payload.submission_type == SubmissionType.QC
    target_stage = LoanStage.QC_REVIEW if is_qc else LoanStage.DISCLOSURES_PENDING
    officer_id = await _resolve_submission_officer(db, principal, payload.loan_officer_id)
    phone = clean_text(payload.borrower_phone)
    email = clean_text(payload.borrower_email)

    result = await db.execute(select(Loan).where(Loan.loan_number == loan_number))
    loan = result.scalar_one_or_none()
    if loan is None:
        borrower_name = clean_text(f"{payload.borrower_first_name} {payload.borrower_last_name}")
        loan = Loan(
            id=uuid4(),
            loan_number=loan_number,
            borrower_name=borrower_name or "Unknown Borrower",
            borrower_phone=phone,
            borrower_email=email,
            amount=parse_amount(payload.loan_amount),
            stage=target_stage.value,
            loan_officer_id=officer_id,
        )
        db.add(loan)
    else:
        if principal.is_loan_officer and not authz.can_access_loan(principal, loan):
            raise NotAuthorized()
        if loan.stage == LoanStage.INTAKE.value:
            record_stage_change(db, loan, target_stage, principal.id)
            loan.borrower_phone = phone or loan.borrower_phone
            loan.borrower_email = email or loan.borrower_email

    task = Task(
        id=uuid4(),
        loan_id=loan.id,
        title="Submit for QC" if is_qc else "Submit for Disclosures",
        description=clean_text(payload.notes),
        status=TaskStatus.PENDING.value,
        priority=TaskPriority.NORMAL.value,
        kind=(TaskKind.SUBMIT_QC if is_qc else TaskKind.SUBMIT_DISCLOSURES).value,
        workflow_state=TaskWorkflowState.NONE.value,
        assigned_role=(UserRole.QC if is_qc else UserRole.DISCLOSURE_SPECIALIST).value,
        submission_data=payload.submission_data,
        due_date=_now() + timedelta(hours=SUBMISSION_DUE_HOURS),
    )
    db.add(task)
    record_audit_log(
        db,
        actor_id=principal.id,
        action="SUBMISSION_CREATED",
        resource_type="task",
        resource_id=task.id,
        loan_id=loan.id,
        details={"submission_type": payload.submission_type.value, "loan_number": loan_number},
    )
    await db.commit()
    return SubmissionTaskCreated(task_id=task.id, loan_id=loan.id)


async def request_info_from_loan_officer(
    db: AsyncSession,
    principal: deps.Principal,
    task_id: UUID,
    reason: DisclosureDecisionReason | str,
    message: str,
) -> TaskOut:
    """Block a submission task and open a child task for the loan officer."""
    authz.ensure_capability(principal, Capability.TASKS_REQUEST_INFO)
    reason_value = DisclosureDecisionReason(reason).value
    task, loan_owner_id = await _load_task(db, task_id)
    if not is_submission_task(task):
        raise ValidationFailed("This action is only supported for disclosure/QC submission tasks.")
    if not await _has_proof(db, task.id):
        raise ValidationFailed("Upload proof/error attachment before sending this back to LO.")

    open_result = await db.execute(
        select(Task.id)
        .where(
            Task.parent_task_id == task.id,
            Task.kind == TaskKind.LO_NEEDS_INFO.value,
            Task.status != TaskStatus.COMPLETED.value,
        )
        .limit(1)
    )
    if open_result.scalar_one_or_none() is not None:
        raise ValidationFailed("This task is already waiting on a Loan Officer response.")

    approval = reason_value == DisclosureDecisionReason.APPROVE_INITIAL_DISCLOSURES.value
    task.status = TaskStatus.BLOCKED.value
    task.disclosure_reason = reason_value
    task.workflow_state = (
        TaskWorkflowState.WAITING_ON_LO_APPROVAL if approval else TaskWorkflowState.WAITING_ON_LO
    ).value
    task.loan_officer_approved_at = None

    child = Task(
        id=uuid4(),
        loan_id=task.loan_id,
        title="LO: Approve Initial Disclosures" if approval else "LO: Needs Info",
        description=clean_text(message),
        status=TaskStatus.PENDING.value,
        priority=TaskPriority.HIGH.value,
        kind=TaskKind.LO_NEEDS_INFO.value,
        workflow_state=TaskWorkflowState.NONE.value,
        assigned_role=UserRole.LOAN_OFFICER.value,
        assigned_user_id=loan_owner_id,
        parent_task_id=task.id,
        disclosure_reason=reason_value,
        due_date=_now() + timedelta(hours=SUBMISSION_DUE_HOURS),
    )
    db.add(child)
    record_audit_log(
        db,
        actor_id=principal.id,
        action="TASK_INFO_REQUESTED",
        resource_type="task",
        resource_id=task.id,
        loan_id=task.loan_id,
        details={"reason": reason_value, "child_task_id": child.id},
    )
    await db.commit()
    return TaskOut.model_validate(child)


async def _load_lo_child(db: AsyncSession, principal: deps.Principal, task_id: UUID, unsupported: str):
    task, loan_owner_id = await _load_task(db, task_id)
    if task.kind != TaskKind.LO_NEEDS_INFO.value or task.parent_task_id is None:
        raise ValidationFailed(unsupported)
    allowed = principal.can(Capability.RECORDS_MANAGE_ALL) or (
        principal.is_loan_officer
        and (
            str(task.assigned_user_id) == str(principal.id)
            or str(loan_owner_id) == str(principal.id)
        )
    )
    if not allowed:
        raise NotAuthorized()
    return task


def _append_line(existing: str | None, line: str) -> str:
    return f"{existing}\n\n{line}" if existing else line


async def respond_to_disclosure_request(
    db: AsyncSession,
    principal: deps.Principal,
    task_id: UUID,
    message: str | None = None,
) -> TaskOut:
    child = await _load_lo_child(db, principal, task_id, "This task does not support LO responses.")
    if child.status == TaskStatus.COMPLETED.value:
        raise ValidationFailed("This LO response task is already completed.")

    now = _now()
    note = clean_text(message)
    if note:
        child.description = _append_line(child.description, f"LO Response: {note}")
    child.status = TaskStatus.COMPLETED.value
    child.completed_at = now

    parent = await _get_task(db, child.parent_task_id)
    if parent is not None:
        _release_parent(parent, child, now)

    record_audit_log(
        db,
        actor_id=principal.id,
        action="LO_RESPONSE_RECORDED",
        resource_type="task",
        resource_id=child.id,
        loan_id=child.loan_id,
        details={"parent_task_id": child.parent_task_id},
    )
    await db.commit()
    return TaskOut.model_validate(child)


async def review_initial_disclosure_figures(
    db: AsyncSession,
    principal: deps.Principal,
    task_id: UUID,
    decision: DisclosureReviewDecision | str,
    message: str | None = None,
) -> TaskOut:
    decision_value = DisclosureReviewDecision(decision).value
    child = await _load_lo_child(db, principal, task_id, "This task does not support LO review.")
    if child.disclosure_reason != DisclosureDecisionReason.APPROVE_INITIAL_DISCLOSURES.value:
        raise ValidationFailed(
            "This review action is only available for approval of initial disclosure figures."
        )
    if child.status == TaskStatus.COMPLETED.value:
        raise ValidationFailed("This review task is already completed.")

    now = _now()
    note = clean_text(message)
    if note:
        child.description = _append_line(child.description, f"LO Review: {note}")
    child.status = TaskStatus.COMPLETED.value
    child.completed_at = now

    parent = await _get_task(db, child.parent_task_id)
    if parent is not None:
        parent.status = TaskStatus.PENDING.value
        if decision_value == DisclosureReviewDecision.APPROVE.value:
            parent.workflow_state = TaskWorkflowState.READY_TO_COMPLETE.value
            parent.loan_officer_approved_at = now
        else:
            parent.workflow_state = TaskWorkflowState.NONE.value
            parent.disclosure_reason = DisclosureDecisionReason.OTHER.value
            parent.loan_officer_approved_at = None
            parent.description = f"{note}\n\n{REVISION_NOTE}" if note else REVISION_NOTE

    record_audit_log(
        db,
        actor_id=principal.id,
        action="DISCLOSURE_FIGURES_REVIEWED",
        resource_type="task",
        resource_id=child.id,
        loan_id=child.loan_id,
        details={"decision": decision_value, "parent_task_id": child.parent_task_id},
    )
    await db.commit()
    return TaskOut.model_validate(child)


async def delete_task(db: AsyncSession, principal: deps.Principal, task_id: UUID) -> None:
    if not principal.can(Capability.TASKS_DELETE):
        raise NotAuthorized("Not authorized to delete tasks.")
    result = await db.execute(select(Task).where(Task.id == task_id))
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFound("Task not found.")
    record_audit_log(
        db,
        actor_id=principal.id,
        action="TASK_DELETED",
        resource_type="task",
        resource_id=task.id,
        loan_id=task.loan_id,
        old_value=model_snapshot(task, exclude=["submission_data"]),
    )
    await db.delete(task)
    await db.commit()


def _queue_items(rows) -> list[TaskQueueItem]:
    items: list[TaskQueueItem] = []
    for task, loan_number, borrower_name in rows:
        item = TaskQueueItem.model_validate(task)
        item.loan_number = loan_number
        item.borrower_name = borrower_name
        items.append(item)
    return items


async def list_tasks(
    db: AsyncSession,
    principal: deps.Principal,
    *,
    status: TaskStatus | None = None,
    include_completed: bool = False,
    limit: int = 200,
) -> list[TaskQueueItem]:
    """The caller's task queue, filtered by the shared visibility predicate."""
    query = (
        select(Task, Loan.loan_number, Loan.borrower_name)
        .join(Loan, Loan.id == Task.loan_id)
        .where(authz.task_visibility_clause(principal))
    )
    if status is not None:
        query = query.where(Task.status == status.value)
    elif not include_completed:
        query = query.where(Task.status != TaskStatus.COMPLETED.value)
    query = query.order_by(Task.due_date.asc().nulls_last(), Task.created_at.asc()).limit(limit)
    result = await db.execute(query)
    return _queue_items(result.all())


async def list_loan_tasks(db: AsyncSession, principal: deps.Principal, loan_id: UUID) -> list[TaskOut]:
    result = await db.execute(select(Loan).where(Loan.id == loan_id))
    loan = result.scalar_one_or_none()
    if loan is None:
        raise NotFound("Loan not found.")
    query = (
        select(Task)
        .join(Loan, Loan.id == Task.loan_id)
        .where(Task.loan_id == loan_id, authz.task_visibility_clause(principal))
        .order_by(Task.created_at.asc())
    )
    tasks_result = await db.execute(query)
    tasks = list(tasks_result.scalars().all())
    # Non-owners only see a loan through tasks assigned to them.
    if not tasks and not authz.can_access_loan(principal, loan):
        raise NotAuthorized()
    return [TaskOut.model_validate(task) for task in tasks]


async def list_all_tasks(
    db: AsyncSession,
    principal: deps.Principal,
    *,
    status: TaskStatus | None = None,
    limit: int = 500,
) -> list[TaskQueueItem]:
    """Every task across the portal, newest first."""
    if not principal.can(Capability.TASKS_VIEW_ALL):
        raise NotAuthorized()
    query = select(Task, Loan.loan_number, Loan.borrower_name).join(Loan, Loan.id == Task.loan_id)
    if status is not None:
        query = query.where(Task.status == status.value)
    result = await db.execute(query.order_by(Task.created_at.desc()).limit(limit))
    return _queue_items(result.all())
