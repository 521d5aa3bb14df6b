from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from loanflow.core.errors import UpstreamFailure, ValidationFailed
from loanflow.core.security import hash_token
from loanflow.models.audit_log import AuditLog
from loanflow.models.tokens import InviteToken, PasswordResetToken
from loanflow.models.user import User
from loanflow.services import email as email_service
from loanflow.services import users

from conftest import FakeAsyncSession, FakeResult, entity_handler, make_user


@pytest.fixture(autouse=True)
def _cheap_hash(monkeypatch):
    monkeypatch.setattr(users, "get_password_hash", lambda password: f"hashed:{password}")


def _invite(**overrides):
    defaults = dict(
        id=uuid4(),
        email="new.hire@example.com",
        name="New Hire",
        role="QC",
        token_hash=hash_token("raw-token"),
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        used_at=None,
    )
    defaults.update(overrides)
    return InviteToken(**defaults)


@pytest.mark.asyncio
async def test_expired_invite_writes_nothing():
    db = FakeAsyncSession()
    db.on_execute(
        entity_handler(InviteToken, FakeResult(scalar=_invite(expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))))
    )

    with pytest.raises(ValidationFailed) as excinfo:
        await users.accept_invite(db, "raw-token", "Secret123!")

    assert excinfo.value.message == "Invite is invalid or expired."
    assert db.added == []
    assert not db.committed


@pytest.mark.asyncio
async def test_used_or_unknown_invite_is_rejected():
    db = FakeAsyncSession()
    with pytest.raises(ValidationFailed):
        await users.accept_invite(db, "nope", "Secret123!")

    used = FakeAsyncSession()
    used.on_execute(entity_handler(InviteToken, FakeResult(scalar=_invite(used_at=datetime.now(timezone.utc)))))
    with pytest.raises(ValidationFailed):
        await users.accept_invite(used, "raw-token", "Secret123!")


@pytest.mark.asyncio
async def test_accepting_invite_creates_user_with_invited_role():
    invite = _invite()
    db = FakeAsyncSession()
    db.on_execute(entity_handler(InviteToken, FakeResult(scalar=invite)))

    out = await users.accept_invite(db, "raw-token", "Secret123!")

    [user] = db.added_of(User)
    assert user.email == "new.hire@example.com"
    assert user.role == "QC"
    assert user.password_hash == "hashed:Secret123!"
    assert invite.used_at is not None
    assert out.id == user.id
    assert db.commit_count == 1


@pytest.mark.asyncio
async def test_invite_stores_only_the_token_digest(monkeypatch, admin):
    sent = {}

    async def _send(to, name, link):
        sent.update(to=to, name=name, link=link)

    monkeypatch.setattr(email_service, "send_invite_email", _send)
    db = FakeAsyncSession()
    stale = _invite(email="sam@example.com")
    db.on_execute(entity_handler(InviteToken, FakeResult(items=[stale])))

    out = await users.invite_user(db, admin, name=" Sam ", email=" SAM@example.com ", role="MANAGER")

    [invite] = db.added_of(InviteToken)
    raw_token = sent["link"].rsplit("/", 1)[1]
    assert sent["link"].startswith("http://portal.test/auth/invite/")
    assert sent["to"] == "sam@example.com"
    assert invite.token_hash == hash_token(raw_token)
    assert raw_token != invite.token_hash
    assert db.deleted == [stale]
    assert out.role.value == "MANAGER"
    assert db.committed


@pytest.mark.asyncio
async def test_invite_email_failure_rolls_back(monkeypatch, admin):
    async def _fail(*_args):
        raise email_service.EmailConfigurationError("not configured")

    monkeypatch.setattr(email_service, "send_invite_email", _fail)
    db = FakeAsyncSession()

    with pytest.raises(UpstreamFailure):
        await users.invite_user(db, admin, name="Sam", email="sam@example.com", role="QC")

    assert db.rolled_back
    assert not db.committed


@pytest.mark.asyncio
async def test_invite_for_existing_email_is_rejected(admin):
    db = FakeAsyncSession()
    db.on_execute(entity_handler(User, FakeResult(scalar=make_user(email="taken@example.com"))))

    with pytest.raises(ValidationFailed) as excinfo:
        await users.invite_user(db, admin, name="T", email="taken@example.com", role="QC")
    assert excinfo.value.message == users.DUPLICATE_EMAIL_MESSAGE


@pytest.mark.asyncio
async def test_admin_cannot_deactivate_or_delete_self(admin):
    with pytest.raises(ValidationFailed):
        await users.update_user_status(FakeAsyncSession(), admin, admin.id, False)
    with pytest.raises(ValidationFailed):
        await users.delete_user(FakeAsyncSession(), admin, admin.id)


@pytest.mark.asyncio
async def test_delete_user_is_soft(admin):
    target = make_user()
    db = FakeAsyncSession()
    db.on_execute(entity_handler(User, FakeResult(scalar=target)))

    await users.delete_user(db, admin, target.id)

    assert target.active is False
    assert db.deleted == []
    [audit] = db.added_of(AuditLog)
    assert "email" in audit.details["changes"]
    assert "password_hash" not in audit.details["changes"]


@pytest.mark.asyncio
async def test_unknown_role_is_rejected(admin):
    with pytest.raises(ValidationFailed):
        await users.create_user(
            FakeAsyncSession(), admin, name="A", email="a@example.com", role="PILOT", password="x"
        )


@pytest.mark.asyncio
async def test_reset_request_for_unknown_email_is_silent(monkeypatch):
    async def _never(*_args):
        raise AssertionError("no email expected")

    monkeypatch.setattr(email_service, "send_password_reset_email", _never)
    db = FakeAsyncSession()

    await users.request_password_reset(db, "ghost@example.com")

    assert db.added == []


@pytest.mark.asyncio
async def test_reset_token_sets_password_once():
    user = make_user()
    reset = PasswordResetToken(
        id=uuid4(),
        user_id=user.id,
        token_hash=hash_token("reset-raw"),
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=5),
        used_at=None,
    )
    db = FakeAsyncSession()
    db.on_execute(entity_handler(PasswordResetToken, FakeResult(scalar=reset)))
    db.on_execute(entity_handler(User, FakeResult(scalar=user)))

    await users.reset_password_with_token(db, "reset-raw", "N3w-pass")

    assert user.password_hash == "hashed:N3w-pass"
    assert reset.used_at is not None


def test_user_admin_requires_users_capability(api_as, manager):
    body = api_as(manager).get("/api/v1/admin/users").json()["data"]

    assert body == {"success": False, "error": "Not authorized.", "data": None}


def test_admin_lists_users(api_as, admin, fake_db):
    fake_db.on_execute(entity_handler(User, FakeResult(items=[make_user(email="a@example.com")])))

    body = api_as(admin).get("/api/v1/admin/users").json()["data"]

    assert body["success"] is True
    assert [user["email"] for user in body["data"]] == ["a@example.com"]
