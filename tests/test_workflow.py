from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from loanflow.core.errors import NotFound
from loanflow.models.audit_log import AuditLog
from loanflow.models.loan import Loan
from loanflow.models.task import Task
from loanflow.models.task_template import TaskTemplate
from loanflow.schemas.loans import LoanStage
from loanflow.services import workflow

from conftest import FakeAsyncSession, FakeResult, entity_handler, make_loan, make_template


def _session(loan, templates) -> FakeAsyncSession:
    db = FakeAsyncSession()
    db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    db.on_execute(entity_handler(TaskTemplate, FakeResult(items=templates)))
    return db


@pytest.mark.asyncio
async def test_stage_change_expands_templates_with_due_offsets():
    loan = make_loan(stage=LoanStage.INTAKE.value)
    templates = [
        make_template(stage="DISCLOSURES_PENDING", title="Prepare disclosures", due_offset_days=1),
        make_template(stage="DISCLOSURES_PENDING", title="Send disclosures", due_offset_days=2),
    ]
    db = _session(loan, templates)
    actor_id = uuid4()
    before = datetime.now(timezone.utc)

    updated = await workflow.change_loan_stage(db, loan.id, LoanStage.DISCLOSURES_PENDING, actor_id)

    assert updated.stage == "DISCLOSURES_PENDING"
    tasks = db.added_of(Task)
    assert [task.title for task in tasks] == ["Prepare disclosures", "Send disclosures"]
    assert all(task.status == "PENDING" and task.priority == "NORMAL" for task in tasks)
    assert all(task.loan_id == loan.id for task in tasks)
    assert tasks[0].assigned_role == templates[0].assigned_role
    assert tasks[0].due_date - before >= timedelta(days=1)
    assert tasks[0].due_date - before < timedelta(days=1, minutes=1)
    assert tasks[1].due_date - before >= timedelta(days=2)
    assert tasks[1].due_date - before < timedelta(days=2, minutes=1)

    audits = db.added_of(AuditLog)
    assert len(audits) == 1
    assert audits[0].action == "STAGE_CHANGED"
    assert audits[0].actor_id == actor_id
    assert audits[0].loan_id == loan.id
    assert audits[0].details == {
        "from": "INTAKE",
        "to": "DISCLOSURES_PENDING",
        "message": "Moved to DISCLOSURES_PENDING",
    }
    assert db.commit_count == 1


@pytest.mark.asyncio
async def test_stage_without_templates_only_audits():
    loan = make_loan(stage=LoanStage.INTAKE.value)
    db = _session(loan, [])

    await workflow.change_loan_stage(db, loan.id, "UNDERWRITING", uuid4())

    assert db.added_of(Task) == []
    assert len(db.added_of(AuditLog)) == 1
    assert loan.stage == "UNDERWRITING"
    assert db.committed


@pytest.mark.asyncio
async def test_repeating_a_transition_generates_tasks_again():
    loan = make_loan(stage=LoanStage.INTAKE.value)
    templates = [make_template(stage="QC_REVIEW", title="QC checklist")]
    db = _session(loan, templates)

    await workflow.change_loan_stage(db, loan.id, LoanStage.QC_REVIEW, uuid4())
    await workflow.change_loan_stage(db, loan.id, LoanStage.QC_REVIEW, uuid4())

    assert len(db.added_of(Task)) == 2
    assert len(db.added_of(AuditLog)) == 2


@pytest.mark.asyncio
async def test_unknown_loan_raises_not_found():
    db = _session(None, [])

    with pytest.raises(NotFound):
        await workflow.change_loan_stage(db, uuid4(), LoanStage.FUNDED, uuid4())

    assert db.added == []
    assert not db.committed


def test_record_stage_change_returns_previous_stage():
    loan = make_loan(stage="QC_REVIEW")
    db = FakeAsyncSession()

    previous = workflow.record_stage_change(db, loan, LoanStage.SUBMIT_TO_UW_PREP, uuid4())

    assert previous == "QC_REVIEW"
    assert loan.stage == "SUBMIT_TO_UW_PREP"
    assert db.added_of(AuditLog)[0].summary == "Moved to SUBMIT_TO_UW_PREP"
