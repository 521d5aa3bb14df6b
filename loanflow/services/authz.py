"""Single predicate library for every data-access path.

Capabilities come from the role table in ``loanflow.core.permissions``; per
resource access is granted by the relations listed in ``RESOURCE_RELATIONS``.
``records.manage_all`` short-circuits every relation check.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, false, or_, select, true

from loanflow.core.errors import NotAuthorized, ValidationFailed
from loanflow.core.permissions import Capability, UserRole
from loanflow.models.loan import Loan
from loanflow.models.task import Task
from loanflow.schemas.attachments import TaskAttachmentPurpose
from loanflow.schemas.tasks import VA_TASK_KINDS, TaskKind

if TYPE_CHECKING:
    from loanflow.api.deps import Principal


OWNER = "owner"
LOAN_OFFICER_OWNER = "loan_officer_owner"
ASSIGNED_USER = "assigned_user"
ASSIGNED_ROLE = "assigned_role"

RESOURCE_RELATIONS: dict[str, tuple[str, ...]] = {
    "loan": (OWNER,),
    "pipeline_note": (OWNER,),
    "client_folder": (OWNER,),
    "task": (ASSIGNED_USER, ASSIGNED_ROLE, LOAN_OFFICER_OWNER),
    "task_attachment": (ASSIGNED_USER, ASSIGNED_ROLE, LOAN_OFFICER_OWNER),
    "client_document": (OWNER,),
    "task_client_documents": (LOAN_OFFICER_OWNER,),
}

VA_PROOF_ONLY_MESSAGE = "VA tasks only accept proof uploads."


def _same(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)


def _relation_holds(
    relation: str,
    principal: "Principal",
    *,
    owner_id: Any = None,
    assigned_user_id: Any = None,
    assigned_role: str | None = None,
) -> bool:
    if relation == OWNER:
        return _same(owner_id, principal.id)
    if relation == LOAN_OFFICER_OWNER:
        return principal.role == UserRole.LOAN_OFFICER.value and _same(owner_id, principal.id)
    if relation == ASSIGNED_USER:
        return _same(assigned_user_id, principal.id)
    if relation == ASSIGNED_ROLE:
        return assigned_role is not None and assigned_role == principal.role
    return False


def can_access(
    principal: "Principal",
    resource_type: str,
    *,
    owner_id: Any = None,
    assigned_user_id: Any = None,
    assigned_role: str | None = None,
) -> bool:
    if principal.can(Capability.RECORDS_MANAGE_ALL):
        return True
    relations = RESOURCE_RELATIONS.get(resource_type)
    if relations is None:
        raise KeyError(f"Unknown resource type: {resource_type}")
    return any(
        _relation_holds(
            relation,
            principal,
            owner_id=owner_id,
            assigned_user_id=assigned_user_id,
            assigned_role=assigned_role,
        )
        for relation in relations
    )


def ensure_access(principal: "Principal", resource_type: str, **relations: Any) -> None:
    if not can_access(principal, resource_type, **relations):
        raise NotAuthorized()


def ensure_capability(principal: "Principal", capability: Capability | str) -> None:
    if not principal.can(capability):
        raise NotAuthorized()


def can_access_loan(principal: "Principal", loan: Loan) -> bool:
    return can_access(principal, "loan", owner_id=loan.loan_officer_id)


def can_access_task(principal: "Principal", task: Task, loan_owner_id: Any) -> bool:
    return can_access(
        principal,
        "task",
        owner_id=loan_owner_id,
        assigned_user_id=task.assigned_user_id,
        assigned_role=task.assigned_role,
    )


def ensure_task_access(principal: "Principal", task: Task, loan_owner_id: Any, resource_type: str = "task") -> None:
    ensure_access(
        principal,
        resource_type,
        owner_id=loan_owner_id,
        assigned_user_id=task.assigned_user_id,
        assigned_role=task.assigned_role,
    )


def ensure_upload_purpose(task: Task, purpose: TaskAttachmentPurpose | str) -> None:
    value = purpose.value if isinstance(purpose, TaskAttachmentPurpose) else str(purpose)
    if task.kind in VA_TASK_KINDS and value != TaskAttachmentPurpose.PROOF.value:
        raise ValidationFailed(VA_PROOF_ONLY_MESSAGE)


def task_visibility_clause(principal: "Principal"):
    """Where-clause restricting a ``select(Task)`` to what the caller may see.

    Loan-owner visibility needs ``Loan`` joined on ``Task.loan_id``.
    """
    if principal.can(Capability.TASKS_VIEW_ALL) or principal.can(Capability.RECORDS_MANAGE_ALL):
        return true()
    role = principal.role
    own = Task.assigned_user_id == principal.id
    if role == UserRole.LOAN_OFFICER.value:
        return or_(own, Loan.loan_officer_id == principal.id)
    if role == UserRole.DISCLOSURE_SPECIALIST.value:
        return or_(own, Task.assigned_role == role, Task.kind == TaskKind.SUBMIT_DISCLOSURES.value)
    if role == UserRole.QC.value:
        return or_(own, Task.assigned_role == role, Task.kind == TaskKind.SUBMIT_QC.value)
    if not role:
        return false()
    return or_(own, Task.assigned_role == role)


def visible_tasks_query(principal: "Principal"):
    return (
        select(Task)
        .join(Loan, Loan.id == Task.loan_id)
        .where(and_(task_visibility_clause(principal)))
    )
