from uuid import uuid4

import pytest

from loanflow.core.errors import NotFound, ValidationFailed
from loanflow.core.permissions import UserRole
from loanflow.models.loan import Loan
from loanflow.models.task import Task
from loanflow.models.user import User
from loanflow.services import team

from conftest import FakeAsyncSession, FakeResult, entity_handler, make_loan, make_task, make_user


def _dml_handler(result):
    def _handler(stmt):
        return result if stmt.is_dml else None

    return _handler


@pytest.mark.asyncio
async def test_reassign_moves_loans_and_clears_columns(manager):
    target = make_user()
    db = FakeAsyncSession()
    db.on_execute(_dml_handler(FakeResult(rowcount=3)))
    db.on_execute(entity_handler(User, FakeResult(scalar=target)))

    result = await team.reassign_loans(db, manager, uuid4(), target.id)

    assert result.reassigned == 3
    [statement] = [stmt for stmt in db.executed if stmt.is_dml]
    params = statement.compile().params
    assert params["loan_officer_id"] == target.id
    assert "pipeline_stage_id" in str(statement)
    assert db.commit_count == 1


@pytest.mark.asyncio
async def test_reassign_rejects_same_or_missing_users(manager):
    same = uuid4()
    with pytest.raises(ValidationFailed):
        await team.reassign_loans(FakeAsyncSession(), manager, same, same)
    with pytest.raises(ValidationFailed):
        await team.reassign_loans(FakeAsyncSession(), manager, None, uuid4())


@pytest.mark.asyncio
async def test_reassign_to_inactive_user_is_not_found(manager):
    db = FakeAsyncSession()
    db.on_execute(entity_handler(User, FakeResult(scalar=make_user(active=False))))

    with pytest.raises(NotFound):
        await team.reassign_loans(db, manager, uuid4(), uuid4())
    assert not db.committed


@pytest.mark.asyncio
async def test_member_details_label_unplaced_loans():
    user = make_user(role=UserRole.LOAN_OFFICER)
    loan = make_loan(loan_officer_id=user.id)
    task = make_task(loan_id=loan.id, assigned_user_id=user.id)
    db = FakeAsyncSession()
    db.on_execute(entity_handler(User, FakeResult(scalar=user)))
    db.on_execute(entity_handler(Loan, FakeResult(rows=[(loan, None)])))
    db.on_execute(entity_handler(Task, FakeResult(rows=[(task, loan.loan_number, loan.borrower_name)])))

    details = await team.get_member_details(db, user.id)

    assert details.loans[0].stage == "Unassigned"
    assert details.tasks[0].loan_number == loan.loan_number
    assert details.tasks[0].attachments == []
    assert (details.member.loan_count, details.member.task_count) == (1, 1)


def test_team_pages_need_team_capability(api_as, loan_officer):
    response = api_as(loan_officer).get("/api/v1/team/members")

    assert response.status_code == 403


def test_reassign_endpoint_reports_denial_in_body(api_as, loan_officer):
    body = api_as(loan_officer).post(
        "/api/v1/team/reassign", json={"from_user_id": str(uuid4()), "to_user_id": str(uuid4())}
    ).json()["data"]

    assert body["success"] is False
    assert body["error"] == "Not authorized."
