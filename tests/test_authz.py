from uuid import uuid4

import pytest

from loanflow.core.errors import NotAuthorized, ValidationFailed
from loanflow.core.permissions import Capability, UserRole, capabilities_for, has_capability
from loanflow.schemas.attachments import TaskAttachmentPurpose
from loanflow.services import authz

from conftest import make_loan, make_principal, make_task


def test_capability_table():
    assert has_capability(UserRole.ADMIN, Capability.USERS_MANAGE)
    assert has_capability(UserRole.MANAGER, Capability.RECORDS_MANAGE_ALL)
    assert not has_capability(UserRole.MANAGER, Capability.USERS_MANAGE)
    assert has_capability(UserRole.QC, Capability.TASKS_REQUEST_INFO)
    assert has_capability(UserRole.LOAN_OFFICER, Capability.PIPELINE_VIEW)
    assert not has_capability(UserRole.LOAN_OFFICER, Capability.TASKS_DELETE)
    assert capabilities_for(UserRole.VA_TITLE) == []
    assert capabilities_for(None) == []


def test_loan_officer_limited_to_own_loans():
    officer = make_principal(UserRole.LOAN_OFFICER)
    own = make_loan(loan_officer_id=officer.id)
    other = make_loan(loan_officer_id=uuid4())

    assert authz.can_access_loan(officer, own)
    assert not authz.can_access_loan(officer, other)
    with pytest.raises(NotAuthorized):
        authz.ensure_access(officer, "loan", owner_id=other.loan_officer_id)


@pytest.mark.parametrize("role", [UserRole.ADMIN, UserRole.MANAGER])
def test_manage_all_roles_reach_everything(role):
    principal = make_principal(role)
    loan = make_loan(loan_officer_id=uuid4())
    task = make_task(loan_id=loan.id, assigned_role=UserRole.QC.value)

    assert authz.can_access_loan(principal, loan)
    assert authz.can_access_task(principal, task, loan.loan_officer_id)
    assert authz.can_access(principal, "client_document", owner_id=uuid4())


def test_task_access_by_assignment_role_and_owner():
    officer = make_principal(UserRole.LOAN_OFFICER)
    qc = make_principal(UserRole.QC)
    processor = make_principal(UserRole.PROCESSOR_JR)
    owner_id = officer.id

    qc_task = make_task(assigned_role=UserRole.QC.value)
    assert authz.can_access_task(qc, qc_task, owner_id)
    assert authz.can_access_task(officer, qc_task, owner_id)
    assert not authz.can_access_task(processor, qc_task, owner_id)

    assigned = make_task(assigned_user_id=processor.id)
    assert authz.can_access_task(processor, assigned, uuid4())


def test_loan_owner_relation_requires_loan_officer_role():
    processor = make_principal(UserRole.PROCESSOR_SR)
    task = make_task()
    # Owning the loan only counts for loan officers.
    assert not authz.can_access_task(processor, task, processor.id)


def test_officer_cannot_touch_foreign_task_unless_assigned():
    officer = make_principal(UserRole.LOAN_OFFICER)
    foreign = make_task(assigned_role=UserRole.QC.value)
    assert not authz.can_access_task(officer, foreign, uuid4())

    foreign.assigned_user_id = officer.id
    assert authz.can_access_task(officer, foreign, uuid4())


def test_va_tasks_only_accept_proof_uploads():
    task = make_task(kind="VA_HOI")
    authz.ensure_upload_purpose(task, TaskAttachmentPurpose.PROOF)
    with pytest.raises(ValidationFailed, match="VA tasks only accept proof uploads."):
        authz.ensure_upload_purpose(task, TaskAttachmentPurpose.OTHER)

    regular = make_task(kind=None)
    authz.ensure_upload_purpose(regular, "OTHER")


def test_unknown_resource_type_is_a_programming_error():
    with pytest.raises(KeyError):
        authz.can_access(make_principal(UserRole.QC), "spaceship", owner_id=uuid4())


def test_view_role_never_widens_access():
    officer = make_principal(UserRole.LOAN_OFFICER, view_role=UserRole.ADMIN.value)
    assert not authz.can_access_loan(officer, make_loan(loan_officer_id=uuid4()))
