from uuid import uuid4

from loanflow.api.v1.routers import loans as loans_router
from loanflow.core.permissions import UserRole
from loanflow.models.loan import Loan
from loanflow.models.task import Task
from loanflow.models.task_template import TaskTemplate

from conftest import FakeResult, entity_handler, make_loan, make_principal, make_template


def test_stage_change_requires_login(api_as):
    response = api_as(None).post(f"/api/v1/loans/{uuid4()}/stage", json={"stage": "UNDERWRITING"})

    assert response.status_code == 401
    assert response.json()["message"] == "Not authenticated."


def test_stage_change_for_someone_else_is_forbidden(api_as, loan_officer, fake_db):
    response = api_as(loan_officer).post(
        f"/api/v1/loans/{uuid4()}/stage",
        json={"stage": "UNDERWRITING", "user_id": str(uuid4())},
    )

    assert response.status_code == 403
    assert response.json()["message"] == "Not authorized."
    assert fake_db.executed == []


def test_stage_change_on_foreign_loan_is_forbidden(api_as, loan_officer, fake_db):
    loan = make_loan()
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    response = api_as(loan_officer).post(f"/api/v1/loans/{loan.id}/stage", json={"stage": "UNDERWRITING"})

    assert response.status_code == 403
    assert loan.stage == "INTAKE"


def test_stage_change_expands_templates(api_as, loan_officer, fake_db):
    loan = make_loan(loan_officer_id=loan_officer.id)
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))
    fake_db.on_execute(
        entity_handler(
            TaskTemplate,
            FakeResult(items=[make_template(stage="UNDERWRITING", title="Order appraisal")]),
        )
    )

    response = api_as(loan_officer).post(
        f"/api/v1/loans/{loan.id}/stage",
        json={"stage": "UNDERWRITING", "user_id": str(loan_officer.id)},
    )

    assert response.status_code == 200
    body = response.json()["data"]
    assert body["stage"] == "UNDERWRITING"
    assert body["id"] == str(loan.id)
    [task] = fake_db.added_of(Task)
    assert task.title == "Order appraisal"
    assert fake_db.commit_count == 1


def test_unknown_loan_is_404(api_as, manager):
    response = api_as(manager).post(f"/api/v1/loans/{uuid4()}/stage", json={"stage": "FUNDED"})
    assert response.status_code == 404


def test_unexpected_failure_is_reported_generically(api_as, monkeypatch, fake_db):
    manager = make_principal(UserRole.MANAGER)
    loan = make_loan()
    fake_db.on_execute(entity_handler(Loan, FakeResult(scalar=loan)))

    async def _explode(*_args, **_kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(loans_router, "change_loan_stage", _explode)

    response = api_as(manager).post(f"/api/v1/loans/{loan.id}/stage", json={"stage": "FUNDED"})

    assert response.status_code == 500
    assert response.json()["message"] == "Failed to update stage"


def test_invalid_stage_is_422(api_as, manager):
    response = api_as(manager).post(f"/api/v1/loans/{uuid4()}/stage", json={"stage": "LAUNCHED"})
    assert response.status_code == 422
