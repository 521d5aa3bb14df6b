from urllib.parse import parse_qs, urlparse
from uuid import uuid4

import pytest

from loanflow.core.errors import NotAuthorized, NotFound, ValidationFailed
from loanflow.core.permissions import UserRole
from loanflow.core.settings import settings
from loanflow.models.task import Task
from loanflow.models.task_attachment import TaskAttachment
from loanflow.schemas.attachments import FinalizeAttachmentRequest, TaskAttachmentPurpose
from loanflow.services import attachments
from loanflow.services.storage.key_generator import KeyGenerator

from conftest import FakeAsyncSession, FakeResult, entity_handler, make_attachment, make_principal, make_task


@pytest.fixture(autouse=True)
def _local_uploads(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "storage_provider", "local")
    monkeypatch.setattr(settings, "local_upload_dir", str(tmp_path))


def _task_session(task, owner_id):
    db = FakeAsyncSession()
    db.on_execute(entity_handler(Task, FakeResult(rows=[(task, owner_id)])))
    return db


@pytest.mark.asyncio
async def test_upload_url_is_signed_under_task_prefix(loan_officer):
    task = make_task()
    db = _task_session(task, loan_officer.id)

    out = await attachments.create_task_attachment_upload_url(
        db, loan_officer, task.id, TaskAttachmentPurpose.PROOF, "pay stub?.pdf", "application/pdf"
    )

    assert out.method == "PUT"
    assert out.bucket == settings.task_attachments_bucket
    assert out.headers == {"Content-Type": "application/pdf"}
    assert out.storage_path.startswith(f"tasks/{task.id}/")
    assert out.storage_path.endswith("-pay stub_.pdf")
    parsed = urlparse(out.upload_url)
    assert parsed.path == f"/api/v1/storage/local/{settings.task_attachments_bucket}"
    query = parse_qs(parsed.query)
    assert query["key"] == [out.storage_path]
    assert {"expires", "signature"} <= set(query)
    assert db.added == []


@pytest.mark.asyncio
async def test_va_task_only_accepts_proof():
    va = make_principal(UserRole.VA_HOI)
    task = make_task(kind="VA_HOI", assigned_role=UserRole.VA_HOI.value)
    db = _task_session(task, uuid4())

    with pytest.raises(ValidationFailed):
        await attachments.create_task_attachment_upload_url(
            db, va, task.id, TaskAttachmentPurpose.OTHER, "note.txt"
        )


@pytest.mark.asyncio
async def test_unrelated_role_cannot_upload():
    qc = make_principal(UserRole.QC)
    task = make_task(assigned_role=UserRole.DISCLOSURE_SPECIALIST.value)
    db = _task_session(task, uuid4())

    with pytest.raises(NotAuthorized):
        await attachments.create_task_attachment_upload_url(
            db, qc, task.id, TaskAttachmentPurpose.PROOF, "x.pdf"
        )


@pytest.mark.asyncio
async def test_finalize_records_attachment(loan_officer):
    task = make_task()
    db = _task_session(task, loan_officer.id)
    payload = FinalizeAttachmentRequest(
        storage_path=KeyGenerator.task_attachment_key(task.id, "proof.pdf"),
        filename="proof.pdf",
        content_type="application/pdf",
        size_bytes=-5,
    )

    out = await attachments.finalize_task_attachment(db, loan_officer, task.id, payload)

    [attachment] = db.added_of(TaskAttachment)
    assert attachment.size_bytes == 0
    assert attachment.uploaded_by_id == loan_officer.id
    assert out.purpose == TaskAttachmentPurpose.PROOF
    assert db.commit_count == 1


@pytest.mark.asyncio
async def test_finalize_rejects_path_of_another_task(loan_officer):
    task = make_task()
    db = _task_session(task, loan_officer.id)
    payload = FinalizeAttachmentRequest(
        storage_path=KeyGenerator.task_attachment_key(uuid4(), "proof.pdf"),
        filename="proof.pdf",
    )

    with pytest.raises(ValidationFailed):
        await attachments.finalize_task_attachment(db, loan_officer, task.id, payload)
    assert db.added == []


def test_key_ownership_rejects_traversal():
    task_id = uuid4()
    assert KeyGenerator.belongs_to("tasks", task_id, f"tasks/{task_id}/a.pdf")
    assert not KeyGenerator.belongs_to("tasks", task_id, f"tasks/{task_id}/../other/a.pdf")
    assert not KeyGenerator.belongs_to("clients", task_id, f"tasks/{task_id}/a.pdf")


def test_clamp_size():
    assert attachments.clamp_size(None) == 0
    assert attachments.clamp_size(12.9) == 12
    assert attachments.clamp_size(-1) == 0
    assert attachments.clamp_size(float("inf")) == 0


@pytest.mark.asyncio
async def test_download_url_hides_inaccessible_task(loan_officer):
    attachment = make_attachment(task_id=uuid4())
    db = FakeAsyncSession()
    db.on_execute(entity_handler(TaskAttachment, FakeResult(scalar=attachment)))

    with pytest.raises(NotFound) as excinfo:
        await attachments.get_task_attachment_download_url(db, loan_officer, attachment.id)
    assert excinfo.value.message == "Attachment not found."


@pytest.mark.asyncio
async def test_download_url_uses_configured_ttl(monkeypatch, loan_officer):
    monkeypatch.setattr(settings, "signed_url_ttl_seconds", 120)
    task = make_task()
    attachment = make_attachment(task_id=task.id)
    db = FakeAsyncSession()
    db.on_execute(entity_handler(TaskAttachment, FakeResult(scalar=attachment)))
    db.on_execute(entity_handler(Task, FakeResult(rows=[(task, loan_officer.id)])))

    out = await attachments.get_task_attachment_download_url(db, loan_officer, attachment.id)

    assert out.expires_in == 120
    assert parse_qs(urlparse(out.url).query)["key"] == [attachment.storage_path]


@pytest.mark.asyncio
async def test_linked_client_document_downloads_from_client_bucket(loan_officer):
    task = make_task()
    client_path = f"clients/{uuid4()}/{uuid4()}-w2.pdf"
    attachment = make_attachment(task_id=task.id, storage_path=client_path, client_document_id=uuid4())
    db = FakeAsyncSession()
    db.on_execute(entity_handler(TaskAttachment, FakeResult(scalar=attachment)))
    db.on_execute(entity_handler(Task, FakeResult(rows=[(task, loan_officer.id)])))

    out = await attachments.get_task_attachment_download_url(db, loan_officer, attachment.id)

    parsed = urlparse(out.url)
    assert parsed.path == f"/api/v1/storage/local/{settings.client_documents_bucket}"
    assert parse_qs(parsed.query)["key"] == [client_path]


@pytest.mark.asyncio
async def test_stranger_listing_attachments_is_not_authorized():
    processor = make_principal(UserRole.PROCESSOR_SR)
    task = make_task(assigned_role=UserRole.QC.value)
    db = _task_session(task, uuid4())

    with pytest.raises(NotAuthorized):
        await attachments.list_task_attachments(db, processor, task.id)
