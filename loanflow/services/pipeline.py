from __future__ import annotations

import csv
import io
import logging
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import NotAuthorized, NotFound, ValidationFailed
from loanflow.core.permissions import Capability, UserRole
from loanflow.models.loan import Loan
from loanflow.models.pipeline_note import PipelineNote
from loanflow.models.pipeline_stage import PipelineStage
from loanflow.models.task import Task
from loanflow.models.user import User
from loanflow.schemas.loans import LoanOut, LoanStage
from loanflow.schemas.pipeline import (
    LoanDetailsOut,
    LoanOfficerOut,
    PipelineBoardOut,
    PipelineCsvRow,
    PipelineImportResult,
    PipelineNoteOut,
    PipelineStageOut,
)
from loanflow.schemas.tasks import TaskOut
from loanflow.services import authz
from loanflow.utils.parsing import clean_text, parse_amount

logger = logging.getLogger(__name__)

DEFAULT_STAGES: list[tuple[str, str]] = [
    ("New Lead", "#60A5FA"),
    ("Contacted", "#34D399"),
    ("Processing", "#FBBF24"),
    ("Conditional Approval", "#F97316"),
    ("Approved", "#22C55E"),
    ("Funded", "#0EA5E9"),
    ("Closed / Lost", "#94A3B8"),
]

UNKNOWN_BORROWER = "Unknown Borrower"

# Lower-cased CSV headers mapped onto PipelineCsvRow fields.
CSV_HEADER_ALIASES = {
    "loan_number": "loan_number",
    "loan number": "loan_number",
    "loan #": "loan_number",
    "loannumber": "loan_number",
    "borrower_name": "borrower_name",
    "borrower name": "borrower_name",
    "borrower": "borrower_name",
    "first_name": "first_name",
    "first name": "first_name",
    "borrower first name": "first_name",
    "last_name": "last_name",
    "last name": "last_name",
    "borrower last name": "last_name",
    "phone": "borrower_phone",
    "borrower_phone": "borrower_phone",
    "email": "borrower_email",
    "borrower_email": "borrower_email",
    "amount": "amount",
    "loan amount": "amount",
    "loan_amount": "amount",
    "program": "program",
    "loan program": "program",
    "property_address": "property_address",
    "property address": "property_address",
    "stage": "stage_name",
    "stage_name": "stage_name",
    "pipeline stage": "stage_name",
}


async def resolve_board_owner(
    db: AsyncSession,
    principal: deps.Principal,
    requested_owner_id: UUID | None = None,
) -> UUID:
    """Pick the loan officer whose board the caller is working on."""
    if principal.can(Capability.RECORDS_MANAGE_ALL):
        if requested_owner_id is not None:
            result = await db.execute(
                select(User).where(
                    User.id == requested_owner_id,
                    User.role == UserRole.LOAN_OFFICER.value,
                )
            )
            officer = result.scalar_one_or_none()
            if officer is None:
                raise NotFound("Loan officer not found.")
            return officer.id
        result = await db.execute(
            select(User)
            .where(User.role == UserRole.LOAN_OFFICER.value, User.active.is_(True))
            .order_by(User.created_at.asc())
            .limit(1)
        )
        officer = result.scalar_one_or_none()
        if officer is None:
            raise NotFound("No active loan officers.")
        return officer.id
    if principal.is_loan_officer:
        return principal.id
    raise NotAuthorized()


async def list_loan_officers(db: AsyncSession) -> list[LoanOfficerOut]:
    result = await db.execute(
        select(User)
        .where(User.role == UserRole.LOAN_OFFICER.value, User.active.is_(True))
        .order_by(User.name.asc())
    )
    return [
        LoanOfficerOut(id=user.id, name=user.name, email=user.email)
        for user in result.scalars().all()
    ]


async def ensure_default_stages(db: AsyncSession, owner_id: UUID) -> bool:
    """Seed the default columns on an empty board. Returns True when it created them."""
    result = await db.execute(
        select(PipelineStage.id).where(PipelineStage.user_id == owner_id).limit(1)
    )
    if result.scalar_one_or_none() is not None:
        return False

    db.add_all(
        [
            PipelineStage(
                id=uuid4(),
                user_id=owner_id,
                name=name,
                order=index,
                color=color,
                is_default=True,
            )
            for index, (name, color) in enumerate(DEFAULT_STAGES)
        ]
    )
    try:
        await db.commit()
    except IntegrityError:
        # Another request seeded the board first.
        await db.rollback()
        return False
    return True


async def _list_stages(db: AsyncSession, owner_id: UUID) -> list[PipelineStage]:
    result = await db.execute(
        select(PipelineStage)
        .where(PipelineStage.user_id == owner_id)
        .order_by(PipelineStage.order.asc())
    )
    return list(result.scalars().all())


async def _get_owned_stage(db: AsyncSession, owner_id: UUID, stage_id: UUID) -> PipelineStage:
    result = await db.execute(
        select(PipelineStage).where(
            PipelineStage.id == stage_id,
            PipelineStage.user_id == owner_id,
        )
    )
    stage = result.scalar_one_or_none()
    if stage is None:
        raise NotFound("Pipeline stage not found.")
    return stage


async def _get_loan(db: AsyncSession, loan_id: UUID) -> Loan:
    result = await db.execute(select(Loan).where(Loan.id == loan_id))
    loan = result.scalar_one_or_none()
    if loan is None:
        raise NotFound("Loan not found.")
    return loan


async def get_pipeline_data(db: AsyncSession, owner_id: UUID) -> PipelineBoardOut:
    await ensure_default_stages(db, owner_id)
    stages = await _list_stages(db, owner_id)
    loans_result = await db.execute(
        select(Loan).where(Loan.loan_officer_id == owner_id).order_by(Loan.updated_at.desc())
    )
    return PipelineBoardOut(
        owner_id=owner_id,
        stages=[PipelineStageOut.model_validate(stage) for stage in stages],
        loans=[LoanOut.model_validate(loan) for loan in loans_result.scalars().all()],
    )


async def create_stage(db: AsyncSession, owner_id: UUID, name: str, color: str | None = None) -> PipelineStage:
    cleaned = clean_text(name)
    if not cleaned:
        raise ValidationFailed("Stage name is required.")
    result = await db.execute(
        select(PipelineStage)
        .where(PipelineStage.user_id == owner_id)
        .order_by(PipelineStage.order.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    stage = PipelineStage(
        id=uuid4(),
        user_id=owner_id,
        name=cleaned,
        order=(last.order + 1) if last is not None else 0,
        color=clean_text(color),
        is_default=False,
    )
    db.add(stage)
    await db.commit()
    return stage


async def update_stage(
    db: AsyncSession,
    owner_id: UUID,
    stage_id: UUID,
    *,
    name: str | None = None,
    color: str | None = None,
) -> PipelineStage:
    stage = await _get_owned_stage(db, owner_id, stage_id)
    if name is not None:
        cleaned = clean_text(name)
        if not cleaned:
            raise ValidationFailed("Stage name is required.")
        stage.name = cleaned
    if color is not None:
        stage.color = clean_text(color)
    await db.commit()
    return stage


async def reorder_stages(db: AsyncSession, owner_id: UUID, stage_ids: Iterable[UUID]) -> list[PipelineStage]:
    """Write ``order = index`` for the given ids; stages left out keep their relative order after them."""
    requested = [UUID(str(stage_id)) for stage_id in stage_ids]
    if len(set(requested)) != len(requested):
        raise ValidationFailed("Stage ids must be unique.")

    stages = await _list_stages(db, owner_id)
    by_id = {stage.id: stage for stage in stages}
    if any(stage_id not in by_id for stage_id in requested):
        raise ValidationFailed("Stage does not belong to this board.")

    listed = set(requested)
    ordered = [by_id[stage_id] for stage_id in requested]
    ordered.extend(stage for stage in stages if stage.id not in listed)
    for index, stage in enumerate(ordered):
        stage.order = index
    await db.commit()
    return ordered


async def delete_stage(
    db: AsyncSession,
    owner_id: UUID,
    stage_id: UUID,
    fallback_stage_id: UUID | None = None,
) -> int:
    """Delete a column, moving its loans to the fallback (or to no column). Returns loans moved."""
    stage = await _get_owned_stage(db, owner_id, stage_id)
    if fallback_stage_id is not None:
        if fallback_stage_id == stage.id:
            raise ValidationFailed("Fallback stage must differ from the deleted stage.")
        await _get_owned_stage(db, owner_id, fallback_stage_id)

    loans_result = await db.execute(select(Loan).where(Loan.pipeline_stage_id == stage.id))
    loans = list(loans_result.scalars().all())
    for loan in loans:
        loan.pipeline_stage_id = fallback_stage_id
    await db.delete(stage)
    await db.commit()
    return len(loans)


async def move_loan_to_stage(
    db: AsyncSession,
    principal: deps.Principal,
    loan_id: UUID,
    stage_id: UUID | None,
) -> Loan:
    loan = await _get_loan(db, loan_id)
    authz.ensure_access(principal, "loan", owner_id=loan.loan_officer_id)
    if stage_id is not None:
        try:
            await _get_owned_stage(db, loan.loan_officer_id, stage_id)
        except NotFound as exc:
            raise ValidationFailed("Stage does not belong to this loan's board.") from exc
    loan.pipeline_stage_id = stage_id
    await db.commit()
    return loan


async def add_pipeline_note(
    db: AsyncSession,
    principal: deps.Principal,
    loan_id: UUID,
    body: str,
) -> PipelineNoteOut:
    cleaned = clean_text(body)
    if not cleaned:
        raise ValidationFailed("Note body is required.")
    loan = await _get_loan(db, loan_id)
    authz.ensure_access(principal, "pipeline_note", owner_id=loan.loan_officer_id)
    note = PipelineNote(id=uuid4(), loan_id=loan.id, user_id=principal.id, body=cleaned)
    db.add(note)
    await db.commit()
    return PipelineNoteOut(
        id=note.id,
        loan_id=note.loan_id,
        user_id=note.user_id,
        author_name=principal.name,
        body=note.body,
        created_at=note.created_at,
    )


async def get_loan_details(db: AsyncSession, principal: deps.Principal, loan_id: UUID) -> LoanDetailsOut:
    loan = await _get_loan(db, loan_id)
    authz.ensure_access(principal, "loan", owner_id=loan.loan_officer_id)

    pipeline_stage = None
    if loan.pipeline_stage_id is not None:
        stage_result = await db.execute(
            select(PipelineStage).where(PipelineStage.id == loan.pipeline_stage_id)
        )
        pipeline_stage = stage_result.scalar_one_or_none()

    tasks_result = await db.execute(
        select(Task).where(Task.loan_id == loan.id).order_by(Task.created_at.asc())
    )
    notes_result = await db.execute(
        select(PipelineNote, User.name)
        .join(User, User.id == PipelineNote.user_id, isouter=True)
        .where(PipelineNote.loan_id == loan.id)
        .order_by(PipelineNote.created_at.desc())
    )
    notes = [
        PipelineNoteOut(
            id=note.id,
            loan_id=note.loan_id,
            user_id=note.user_id,
            author_name=author_name,
            body=note.body,
            created_at=note.created_at,
        )
        for note, author_name in notes_result.all()
    ]
    return LoanDetailsOut(
        loan=LoanOut.model_validate(loan),
        stage=LoanStage(loan.stage),
        pipeline_stage=PipelineStageOut.model_validate(pipeline_stage) if pipeline_stage else None,
        tasks=[TaskOut.model_validate(task) for task in tasks_result.scalars().all()],
        notes=notes,
    )


def decode_pipeline_csv(body: bytes) -> str:
    try:
        return body.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationFailed("CSV file must be UTF-8 encoded.") from exc


def parse_pipeline_csv(text: str) -> list[PipelineCsvRow]:
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    rows: list[PipelineCsvRow] = []
    for raw in reader:
        mapped: dict[str, str] = {}
        for header, value in raw.items():
            if header is None:
                continue
            field = CSV_HEADER_ALIASES.get(header.strip().lower())
            if field and value is not None and field not in mapped:
                mapped[field] = value
        rows.append(PipelineCsvRow(**mapped))
    return rows


async def import_pipeline_csv(
    db: AsyncSession,
    owner_id: UUID,
    rows: list[PipelineCsvRow],
) -> PipelineImportResult:
    """Create loans for new loan numbers; existing and repeated numbers are skipped and counted."""
    if not rows:
        raise ValidationFailed("No rows to import.")

    cleaned = [row for row in rows if clean_text(row.loan_number)]
    if not cleaned:
        return PipelineImportResult(created=0, skipped=len(rows))

    await ensure_default_stages(db, owner_id)
    stages = await _list_stages(db, owner_id)
    stage_by_name = {stage.name.strip().lower(): stage.id for stage in stages}
    default_stage_id = stages[0].id if stages else None

    numbers = sorted({clean_text(row.loan_number) for row in cleaned})
    existing_result = await db.execute(select(Loan.loan_number).where(Loan.loan_number.in_(numbers)))
    seen = set(existing_result.scalars().all())

    created = 0
    for row in cleaned:
        loan_number = clean_text(row.loan_number)
        if loan_number in seen:
            continue
        seen.add(loan_number)
        borrower_name = (
            clean_text(row.borrower_name)
            or clean_text(f"{row.first_name or ''} {row.last_name or ''}")
            or UNKNOWN_BORROWER
        )
        stage_key = (row.stage_name or "").strip().lower()
        db.add(
            Loan(
                id=uuid4(),
                loan_number=loan_number,
                borrower_name=borrower_name,
                borrower_phone=clean_text(row.borrower_phone),
                borrower_email=clean_text(row.borrower_email),
                amount=parse_amount(row.amount),
                program=clean_text(row.program),
                property_address=clean_text(row.property_address),
                stage=LoanStage.INTAKE.value,
                loan_officer_id=owner_id,
                pipeline_stage_id=stage_by_name.get(stage_key, default_stage_id),
            )
        )
        created += 1

    if created:
        await db.commit()
    skipped = len(rows) - created
    logger.info("Pipeline import for %s: created=%d skipped=%d", owner_id, created, skipped)
    return PipelineImportResult(created=created, skipped=skipped)
