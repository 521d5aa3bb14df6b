import pytest
from fastapi.testclient import TestClient

from loanflow.api import auth_utils
from loanflow.core.permissions import UserRole
from loanflow.core.security import create_access_token, decode_token
from loanflow.db.session import get_db
from loanflow.main import app
from loanflow.models.user import User

from conftest import FakeResult, entity_handler, make_user


@pytest.fixture
def attempts(monkeypatch):
    recorded = []

    async def _check(identifier):
        recorded.append(("check", identifier))

    async def _register(identifier, success):
        recorded.append((identifier, success))

    monkeypatch.setattr(auth_utils, "check_lockout", _check)
    monkeypatch.setattr(auth_utils, "register_login_attempt", _register)
    monkeypatch.setattr(auth_utils, "verify_password", lambda plain, hashed: plain == "right-password")
    return recorded


@pytest.fixture
def client(fake_db):
    async def _get_db():
        yield fake_db

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_login_issues_access_token(client, fake_db, attempts, patch_jwt_keys):
    user = make_user(email="lo@example.com")
    fake_db.on_execute(entity_handler(User, FakeResult(scalar=user)))

    response = client.post("/api/v1/auth/login", json={"email": "LO@example.com", "password": "right-password"})

    assert response.status_code == 200
    token = response.json()["data"]["access_token"]
    claims = decode_token(token, expected_type="access")
    assert claims["sub"] == str(user.id)
    assert claims["role"] == "LOAN_OFFICER"
    assert attempts == [("check", "lo@example.com"), ("lo@example.com", True)]


def test_wrong_password_counts_as_failure(client, fake_db, attempts, patch_jwt_keys):
    fake_db.on_execute(entity_handler(User, FakeResult(scalar=make_user(email="lo@example.com"))))

    response = client.post("/api/v1/auth/login", json={"email": "lo@example.com", "password": "nope"})

    assert response.status_code == 401
    assert attempts[-1] == ("lo@example.com", False)


def test_inactive_user_cannot_log_in(client, fake_db, attempts, patch_jwt_keys):
    fake_db.on_execute(entity_handler(User, FakeResult(scalar=make_user(email="old@example.com", active=False))))

    response = client.post("/api/v1/auth/login", json={"email": "old@example.com", "password": "right-password"})

    assert response.status_code == 401


def test_me_reports_capabilities_and_sections(client, fake_db, patch_jwt_keys):
    user = make_user(role=UserRole.MANAGER, email="boss@example.com")
    fake_db.on_execute(entity_handler(User, FakeResult(scalar=user)))
    token = create_access_token(str(user.id), role=user.role)

    body = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"}).json()["data"]

    assert body["role"] == "MANAGER"
    assert "tasks.delete" in body["capabilities"]
    assert "users.manage" not in body["capabilities"]
    assert body["sections"] == ["dashboard", "pipeline", "tasks", "team"]


def test_admin_can_view_as_another_role(client, fake_db, patch_jwt_keys):
    user = make_user(role=UserRole.ADMIN, email="root@example.com")
    fake_db.on_execute(entity_handler(User, FakeResult(scalar=user)))
    token = create_access_token(str(user.id), role=user.role)

    body = client.get(
        "/api/v1/auth/me",
        headers={"Authorization": f"Bearer {token}", "X-View-As-Role": "va_title"},
    ).json()["data"]

    assert body["role"] == "ADMIN"
    assert body["view_role"] == "VA_TITLE"
    assert body["sections"] == ["dashboard", "tasks"]
    assert "users.manage" in body["capabilities"]


def test_manager_view_as_header_is_ignored(client, fake_db, patch_jwt_keys):
    user = make_user(role=UserRole.MANAGER, email="boss@example.com")
    fake_db.on_execute(entity_handler(User, FakeResult(scalar=user)))
    token = create_access_token(str(user.id), role=user.role)

    body = client.get(
        "/api/v1/auth/me",
        headers={"Authorization": f"Bearer {token}", "X-View-As-Role": "ADMIN"},
    ).json()["data"]

    assert body["view_role"] == "MANAGER"


def test_deactivated_user_token_is_rejected(client, fake_db, patch_jwt_keys):
    user = make_user(active=False)
    fake_db.on_execute(entity_handler(User, FakeResult(scalar=user)))
    token = create_access_token(str(user.id), role=user.role)

    response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
