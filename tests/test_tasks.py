from uuid import uuid4

import pytest

from loanflow.core.errors import NotAuthorized, ValidationFailed
from loanflow.core.permissions import UserRole
from loanflow.models.audit_log import AuditLog
from loanflow.models.loan import Loan
from loanflow.models.task import Task
from loanflow.models.task_attachment import TaskAttachment
from loanflow.schemas.tasks import SubmissionTaskCreate, SubmissionType
from loanflow.services import tasks

from conftest import (
    FakeAsyncSession,
    FakeResult,
    column_handler,
    entity_handler,
    make_loan,
    make_principal,
    make_task,
)


def _session(task, owner_id, *, proof=False, loan=None, parent=None, open_child=False):
    """Route the task/owner join, proof lookup, loan lookup and parent fetch."""
    db = FakeAsyncSession()
    db.on_execute(column_handler("id", Task, FakeResult(scalar=uuid4() if open_child else None)))
    db.on_execute(column_handler("id", TaskAttachment, FakeResult(scalar=uuid4() if proof else None)))
    db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    db.on_execute(entity_handler(Task, FakeResult(rows=[(task, owner_id)], items=[], scalar=parent)))
    return db


@pytest.mark.asyncio
async def test_va_task_needs_proof_before_completion():
    va = make_principal(UserRole.VA_TITLE)
    task = make_task(kind="VA_TITLE", assigned_role=UserRole.VA_TITLE.value)
    db = _session(task, uuid4())

    with pytest.raises(ValidationFailed) as excinfo:
        await tasks.update_task_status(db, va, task.id, "COMPLETED")

    assert excinfo.value.message == tasks.PROOF_REQUIRED_MESSAGE
    assert task.status == "PENDING"
    assert not db.committed


@pytest.mark.asyncio
async def test_plain_task_completes_without_proof():
    officer = make_principal(UserRole.LOAN_OFFICER)
    task = make_task(title="Collect paystubs")
    db = _session(task, officer.id)

    result = await tasks.update_task_status(db, officer, task.id, "COMPLETED")

    assert result.status.value == "COMPLETED"
    assert task.completed_at is not None
    assert db.commit_count == 1
    assert len(db.added_of(AuditLog)) == 1


@pytest.mark.asyncio
async def test_reopening_clears_completed_at(loan_officer):
    task = make_task(status="COMPLETED")
    db = _session(task, loan_officer.id)

    await tasks.update_task_status(db, loan_officer, task.id, "IN_PROGRESS")

    assert task.completed_at is None


@pytest.mark.asyncio
async def test_stranger_cannot_update_task():
    processor = make_principal(UserRole.PROCESSOR_JR)
    task = make_task(assigned_role=UserRole.QC.value)
    db = _session(task, uuid4())

    with pytest.raises(NotAuthorized):
        await tasks.update_task_status(db, processor, task.id, "IN_PROGRESS")


@pytest.mark.asyncio
async def test_submission_waiting_on_officer_cannot_complete():
    specialist = make_principal(UserRole.DISCLOSURE_SPECIALIST)
    task = make_task(
        kind="SUBMIT_DISCLOSURES",
        assigned_role=UserRole.DISCLOSURE_SPECIALIST.value,
        workflow_state="WAITING_ON_LO",
    )
    db = _session(task, uuid4(), proof=True)

    with pytest.raises(ValidationFailed):
        await tasks.update_task_status(db, specialist, task.id, "COMPLETED")


@pytest.mark.asyncio
async def test_disclosure_approval_must_be_recorded_first():
    specialist = make_principal(UserRole.DISCLOSURE_SPECIALIST)
    task = make_task(
        kind="SUBMIT_DISCLOSURES",
        assigned_role=UserRole.DISCLOSURE_SPECIALIST.value,
        disclosure_reason="APPROVE_INITIAL_DISCLOSURES",
        workflow_state="READY_TO_COMPLETE",
    )
    db = _session(task, uuid4(), proof=True)

    with pytest.raises(ValidationFailed):
        await tasks.update_task_status(db, specialist, task.id, "COMPLETED")


@pytest.mark.asyncio
async def test_disclosure_completion_moves_loan_to_sent():
    specialist = make_principal(UserRole.DISCLOSURE_SPECIALIST)
    loan = make_loan(stage="DISCLOSURES_PENDING")
    task = make_task(loan_id=loan.id, kind="SUBMIT_DISCLOSURES", assigned_role=UserRole.DISCLOSURE_SPECIALIST.value)
    db = _session(task, loan.loan_officer_id, proof=True, loan=loan)

    await tasks.update_task_status(db, specialist, task.id, "COMPLETED")

    assert loan.stage == "DISCLOSURES_SENT"
    assert db.added_of(Task) == []


@pytest.mark.asyncio
async def test_qc_completion_opens_va_follow_ups():
    qc = make_principal(UserRole.QC)
    loan = make_loan(stage="QC_REVIEW")
    task = make_task(loan_id=loan.id, kind="SUBMIT_QC", assigned_role=UserRole.QC.value)
    db = _session(task, loan.loan_officer_id, proof=True, loan=loan)

    await tasks.update_task_status(db, qc, task.id, "COMPLETED")

    assert loan.stage == "SUBMIT_TO_UW_PREP"
    follow_ups = db.added_of(Task)
    assert [t.kind for t in follow_ups] == ["VA_TITLE", "VA_HOI", "VA_PAYOFF", "VA_APPRAISAL"]
    assert [t.assigned_role for t in follow_ups] == ["VA_TITLE", "VA_HOI", "VA_PAYOFF", "VA_APPRAISAL"]
    assert all(t.loan_id == loan.id and t.status == "PENDING" for t in follow_ups)
    assert db.commit_count == 1


@pytest.mark.asyncio
async def test_request_info_blocks_parent_and_assigns_owner():
    specialist = make_principal(UserRole.DISCLOSURE_SPECIALIST)
    owner_id = uuid4()
    task = make_task(kind="SUBMIT_DISCLOSURES", assigned_role=UserRole.DISCLOSURE_SPECIALIST.value)
    db = _session(task, owner_id, proof=True)

    child = await tasks.request_info_from_loan_officer(
        db, specialist, task.id, "APPROVE_INITIAL_DISCLOSURES", "Please approve the figures"
    )

    assert task.status == "BLOCKED"
    assert task.workflow_state == "WAITING_ON_LO_APPROVAL"
    assert child.kind.value == "LO_NEEDS_INFO"
    assert child.title == "LO: Approve Initial Disclosures"
    assert child.assigned_user_id == owner_id
    assert child.parent_task_id == task.id
    assert child.priority.value == "HIGH"


@pytest.mark.asyncio
async def test_request_info_requires_proof_and_no_open_child():
    specialist = make_principal(UserRole.DISCLOSURE_SPECIALIST)
    task = make_task(kind="SUBMIT_DISCLOSURES", assigned_role=UserRole.DISCLOSURE_SPECIALIST.value)

    with pytest.raises(ValidationFailed):
        await tasks.request_info_from_loan_officer(_session(task, uuid4()), specialist, task.id, "OTHER", "x")
    with pytest.raises(ValidationFailed):
        await tasks.request_info_from_loan_officer(
            _session(task, uuid4(), proof=True, open_child=True), specialist, task.id, "OTHER", "x"
        )


@pytest.mark.asyncio
async def test_loan_officer_cannot_request_info(loan_officer):
    task = make_task(kind="SUBMIT_QC")
    with pytest.raises(NotAuthorized):
        await tasks.request_info_from_loan_officer(
            _session(task, loan_officer.id, proof=True), loan_officer, task.id, "OTHER", "x"
        )


@pytest.mark.asyncio
async def test_officer_response_releases_parent(loan_officer):
    parent = make_task(kind="SUBMIT_DISCLOSURES", status="BLOCKED", workflow_state="WAITING_ON_LO")
    child = make_task(
        loan_id=parent.loan_id,
        kind="LO_NEEDS_INFO",
        parent_task_id=parent.id,
        assigned_user_id=loan_officer.id,
        disclosure_reason="MISSING_ITEMS",
        description="Need bank statements",
    )
    db = _session(child, loan_officer.id, parent=parent)

    await tasks.respond_to_disclosure_request(db, loan_officer, child.id, "Uploaded")

    assert child.status == "COMPLETED"
    assert child.description == "Need bank statements\n\nLO Response: Uploaded"
    assert parent.status == "PENDING"
    assert parent.workflow_state == "READY_TO_COMPLETE"
    assert parent.loan_officer_approved_at is None


@pytest.mark.asyncio
async def test_revision_review_resets_parent(loan_officer):
    parent = make_task(
        kind="SUBMIT_DISCLOSURES",
        status="BLOCKED",
        workflow_state="WAITING_ON_LO_APPROVAL",
        disclosure_reason="APPROVE_INITIAL_DISCLOSURES",
    )
    child = make_task(
        loan_id=parent.loan_id,
        kind="LO_NEEDS_INFO",
        parent_task_id=parent.id,
        assigned_user_id=loan_officer.id,
        disclosure_reason="APPROVE_INITIAL_DISCLOSURES",
    )
    db = _session(child, loan_officer.id, parent=parent)

    await tasks.review_initial_disclosure_figures(db, loan_officer, child.id, "REVISION_REQUIRED", "Rate is wrong")

    assert parent.workflow_state == "NONE"
    assert parent.disclosure_reason == "OTHER"
    assert parent.description == "Rate is wrong\n\nRevision requested by LO."


@pytest.mark.asyncio
async def test_approval_review_stamps_parent(loan_officer):
    parent = make_task(kind="SUBMIT_DISCLOSURES", status="BLOCKED")
    child = make_task(
        loan_id=parent.loan_id,
        kind="LO_NEEDS_INFO",
        parent_task_id=parent.id,
        assigned_user_id=loan_officer.id,
        disclosure_reason="APPROVE_INITIAL_DISCLOSURES",
    )
    db = _session(child, loan_officer.id, parent=parent)

    await tasks.review_initial_disclosure_figures(db, loan_officer, child.id, "APPROVE")

    assert parent.workflow_state == "READY_TO_COMPLETE"
    assert parent.loan_officer_approved_at is not None


@pytest.mark.asyncio
async def test_new_submission_creates_loan_and_task(loan_officer):
    db = FakeAsyncSession()
    payload = SubmissionTaskCreate(
        submission_type=SubmissionType.QC,
        loan_number="  QC-77 ",
        borrower_first_name="Sam",
        borrower_last_name="Ortiz",
        loan_amount="$310,000",
    )

    created = await tasks.create_submission_task(db, loan_officer, payload)

    [loan] = db.added_of(Loan)
    [task] = db.added_of(Task)
    assert loan.loan_number == "QC-77"
    assert loan.stage == "QC_REVIEW"
    assert loan.borrower_name == "Sam Ortiz"
    assert loan.loan_officer_id == loan_officer.id
    assert task.kind == "SUBMIT_QC"
    assert task.assigned_role == "QC"
    assert created.loan_id == loan.id and created.task_id == task.id


@pytest.mark.asyncio
async def test_officer_cannot_submit_on_foreign_loan(loan_officer):
    foreign = make_loan(loan_number="X-1")
    db = FakeAsyncSession()
    db.on_execute(entity_handler(Loan, FakeResult(scalar=foreign)))
    payload = SubmissionTaskCreate(
        submission_type=SubmissionType.DISCLOSURES, loan_number="X-1", borrower_first_name="A"
    )

    with pytest.raises(NotAuthorized):
        await tasks.create_submission_task(db, loan_officer, payload)
    assert not db.committed


@pytest.mark.asyncio
async def test_delete_requires_capability(loan_officer, manager):
    task = make_task()
    with pytest.raises(NotAuthorized):
        await tasks.delete_task(FakeAsyncSession(), loan_officer, task.id)

    db = FakeAsyncSession()
    db.on_execute(entity_handler(Task, FakeResult(scalar=task)))
    await tasks.delete_task(db, manager, task.id)
    assert db.deleted == [task]


@pytest.mark.asyncio
async def test_only_view_all_roles_list_every_task(loan_officer, manager):
    with pytest.raises(NotAuthorized):
        await tasks.list_all_tasks(FakeAsyncSession(), loan_officer)

    task = make_task()
    db = FakeAsyncSession()
    db.on_execute(entity_handler(Task, FakeResult(rows=[(task, "LN-9", "Pat Doe")])))
    [item] = await tasks.list_all_tasks(db, manager)
    assert item.loan_number == "LN-9"
    assert item.borrower_name == "Pat Doe"


@pytest.mark.asyncio
async def test_generic_va_completes_plain_task_without_proof():
    va = make_principal(UserRole.VA)
    task = make_task(title="Call borrower", assigned_role=UserRole.VA.value)
    db = _session(task, uuid4())

    result = await tasks.update_task_status(db, va, task.id, "COMPLETED")

    assert result.status.value == "COMPLETED"
    assert db.commit_count == 1


def _loan_tasks_session(loan, visible):
    db = FakeAsyncSession()
    db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    db.on_execute(entity_handler(Task, FakeResult(items=visible)))
    return db


@pytest.mark.asyncio
async def test_foreign_loan_officer_cannot_list_loan_tasks(loan_officer):
    loan = make_loan(loan_officer_id=uuid4())
    db = _loan_tasks_session(loan, [])

    with pytest.raises(NotAuthorized):
        await tasks.list_loan_tasks(db, loan_officer, loan.id)


@pytest.mark.asyncio
async def test_assigned_processor_lists_their_tasks_on_a_loan():
    processor = make_principal(UserRole.PROCESSOR_JR)
    loan = make_loan(loan_officer_id=uuid4())
    task = make_task(loan_id=loan.id, assigned_user_id=processor.id)
    db = _loan_tasks_session(loan, [task])

    listed = await tasks.list_loan_tasks(db, processor, loan.id)

    assert [item.id for item in listed] == [task.id]


@pytest.mark.asyncio
async def test_owner_and_manager_get_empty_list_for_loan_without_tasks(loan_officer, manager):
    loan = make_loan(loan_officer_id=loan_officer.id)

    assert await tasks.list_loan_tasks(_loan_tasks_session(loan, []), loan_officer, loan.id) == []
    assert await tasks.list_loan_tasks(_loan_tasks_session(loan, []), manager, loan.id) == []
