from __future__ import annotations

import logging
from uuid import UUID, uuid4

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import NotFound, ValidationFailed
from loanflow.models.external_user import ExternalUser, LeadMailboxLead
from loanflow.models.loan import Loan
from loanflow.models.pipeline_note import PipelineNote
from loanflow.models.pipeline_stage import PipelineStage
from loanflow.models.user import User
from loanflow.schemas.lead_mailbox import (
    LeadMailboxPayload,
    MappingBulkResult,
    MappingOut,
    MappingUpsert,
    WebhookResult,
)
from loanflow.schemas.loans import LoanStage
from loanflow.services.audit import record_audit_log
from loanflow.utils.parsing import clean_text, join_present, parse_amount

logger = logging.getLogger(__name__)

PROVIDER = "LEAD_MAILBOX"
LOAN_NUMBER_PREFIX = "LM-"
UNKNOWN_BORROWER = "Unknown Borrower"
SCRUBBED_FIELDS = {"ssn"}

STATUS_CREATED = "created"
STATUS_DUPLICATE = "duplicate"


def borrower_name_for(payload: LeadMailboxPayload) -> str:
    full_name = clean_text(f"{payload.first_name or ''} {payload.last_name or ''}")
    return full_name or clean_text(payload.email) or UNKNOWN_BORROWER


def property_address_for(payload: LeadMailboxPayload) -> str | None:
    return join_present(
        [
            payload.property_address,
            payload.property_city,
            payload.property_state,
            payload.property_zip,
        ]
    )


def scrub_payload(payload: LeadMailboxPayload) -> dict:
    return payload.model_dump(mode="json", exclude=SCRUBBED_FIELDS)


def _note_lines(notes: list[str] | str | None) -> list[str]:
    if not notes:
        return []
    if isinstance(notes, str):
        notes = [notes]
    return [str(line) for line in notes if line is not None]


async def _existing_lead(db: AsyncSession, lead_id: str) -> LeadMailboxLead | None:
    result = await db.execute(select(LeadMailboxLead).where(LeadMailboxLead.lead_id == lead_id))
    return result.scalar_one_or_none()


async def ingest_lead(db: AsyncSession, payload: LeadMailboxPayload) -> WebhookResult:
    """Turn one Lead Mailbox delivery into a loan; re-deliveries of a lead id are no-ops."""
    lead_id = clean_text(payload.lead_id)
    external_user_id = clean_text(payload.user_id)
    if not lead_id or not external_user_id:
        raise ValidationFailed("lead_id and user_id are required")

    existing = await _existing_lead(db, lead_id)
    if existing is not None:
        return WebhookResult(status=STATUS_DUPLICATE, loan_id=existing.loan_id)

    mapping_result = await db.execute(
        select(ExternalUser).where(
            ExternalUser.provider == PROVIDER,
            ExternalUser.external_id == external_user_id,
        )
    )
    mapping = mapping_result.scalar_one_or_none()
    if mapping is None:
        raise NotFound("User mapping not found for external user_id")
    owner_id = mapping.user_id

    stage_result = await db.execute(
        select(PipelineStage)
        .where(PipelineStage.user_id == owner_id)
        .order_by(PipelineStage.order.asc())
        .limit(1)
    )
    default_stage = stage_result.scalar_one_or_none()

    loan = Loan(
        id=uuid4(),
        loan_number=f"{LOAN_NUMBER_PREFIX}{lead_id}",
        borrower_name=borrower_name_for(payload),
        borrower_phone=clean_text(payload.phone),
        borrower_email=clean_text(payload.email),
        amount=parse_amount(payload.loan_amount),
        program=clean_text(payload.loan_program),
        property_address=property_address_for(payload),
        stage=LoanStage.INTAKE.value,
        loan_officer_id=owner_id,
        pipeline_stage_id=default_stage.id if default_stage is not None else None,
    )
    db.add(loan)
    db.add(
        LeadMailboxLead(
            id=uuid4(),
            lead_id=lead_id,
            user_id=owner_id,
            loan_id=loan.id,
            payload=scrub_payload(payload),
        )
    )
    lines = _note_lines(payload.notes)
    if lines:
        db.add(
            PipelineNote(
                id=uuid4(),
                loan_id=loan.id,
                user_id=owner_id,
                body="Lead Mailbox:\n" + "\n".join(lines),
            )
        )

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raced = await _existing_lead(db, lead_id)
        if raced is None:
            raise
        logger.info("Lead %s was ingested concurrently", lead_id)
        return WebhookResult(status=STATUS_DUPLICATE, loan_id=raced.loan_id)

    logger.info("Lead %s ingested as loan %s for user %s", lead_id, loan.id, owner_id)
    return WebhookResult(status=STATUS_CREATED, loan_id=loan.id)


def _mapping_out(mapping: ExternalUser, user_email: str | None, user_name: str | None) -> MappingOut:
    return MappingOut(
        id=mapping.id,
        provider=mapping.provider,
        external_id=mapping.external_id,
        user_id=mapping.user_id,
        user_email=user_email,
        user_name=user_name,
        created_at=mapping.created_at,
    )


async def list_mappings(db: AsyncSession) -> list[MappingOut]:
    result = await db.execute(
        select(ExternalUser, User.email, User.name)
        .join(User, User.id == ExternalUser.user_id, isouter=True)
        .where(ExternalUser.provider == PROVIDER)
        .order_by(ExternalUser.external_id.asc())
    )
    return [_mapping_out(mapping, email, name) for mapping, email, name in result.all()]


async def _resolve_user(db: AsyncSession, user_id: UUID | None, user_email: str | None) -> User:
    email = (user_email or "").strip().lower()
    if user_id is None and not email:
        raise ValidationFailed("External ID and user are required.")
    if user_id is not None:
        result = await db.execute(select(User).where(User.id == user_id))
    else:
        result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found.")
    return user


async def _find_mapping(db: AsyncSession, external_id: str) -> ExternalUser | None:
    result = await db.execute(
        select(ExternalUser).where(
            ExternalUser.provider == PROVIDER,
            ExternalUser.external_id == external_id,
        )
    )
    return result.scalar_one_or_none()


async def upsert_mapping(db: AsyncSession, principal: deps.Principal, payload: MappingUpsert) -> MappingOut:
    external_id = clean_text(payload.external_id)
    if not external_id:
        raise ValidationFailed("External ID and user are required.")
    user = await _resolve_user(db, payload.user_id, payload.user_email)

    mapping = await _find_mapping(db, external_id)
    previous_user_id = None
    if mapping is None:
        mapping = ExternalUser(id=uuid4(), provider=PROVIDER, external_id=external_id, user_id=user.id)
        db.add(mapping)
    else:
        previous_user_id = mapping.user_id
        mapping.user_id = user.id

    record_audit_log(
        db,
        actor_id=principal.id,
        action="LEAD_MAILBOX_MAPPING_UPSERT",
        resource_type="external_user",
        resource_id=mapping.id,
        details={"external_id": external_id, "user_id": user.id, "previous_user_id": previous_user_id},
    )
    await db.commit()
    return _mapping_out(mapping, user.email, user.name)


async def delete_mapping(db: AsyncSession, principal: deps.Principal, mapping_id: UUID) -> None:
    result = await db.execute(select(ExternalUser).where(ExternalUser.id == mapping_id))
    mapping = result.scalar_one_or_none()
    if mapping is None:
        raise NotFound("Mapping not found.")
    record_audit_log(
        db,
        actor_id=principal.id,
        action="LEAD_MAILBOX_MAPPING_DELETE",
        resource_type="external_user",
        resource_id=mapping.id,
        details={"external_id": mapping.external_id, "user_id": mapping.user_id},
    )
    await db.delete(mapping)
    await db.commit()


async def bulk_upsert_mappings(
    db: AsyncSession,
    principal: deps.Principal,
    rows: list[MappingUpsert],
) -> MappingBulkResult:
    """Upsert many mappings; rows without an external id or a known user are skipped."""
    if not rows:
        raise ValidationFailed("No rows to import.")

    emails = {(row.user_email or "").strip().lower() for row in rows} - {""}
    ids = {row.user_id for row in rows if row.user_id is not None}
    users: list[User] = []
    if emails or ids:
        users_result = await db.execute(
            select(User).where(or_(User.id.in_(ids), User.email.in_(emails)))
        )
        users = list(users_result.scalars().all())
    known_ids = {user.id for user in users}
    ids_by_email = {user.email.lower(): user.id for user in users}

    external_ids = {clean_text(row.external_id) for row in rows} - {None}
    mappings: dict[str, ExternalUser] = {}
    if external_ids:
        existing_result = await db.execute(
            select(ExternalUser).where(
                ExternalUser.provider == PROVIDER,
                ExternalUser.external_id.in_(external_ids),
            )
        )
        mappings = {mapping.external_id: mapping for mapping in existing_result.scalars().all()}

    created = updated = skipped = 0
    for row in rows:
        external_id = clean_text(row.external_id)
        if row.user_id is not None:
            user_id = row.user_id if row.user_id in known_ids else None
        else:
            user_id = ids_by_email.get((row.user_email or "").strip().lower())
        if not external_id or user_id is None:
            skipped += 1
            continue
        mapping = mappings.get(external_id)
        if mapping is None:
            mapping = ExternalUser(id=uuid4(), provider=PROVIDER, external_id=external_id, user_id=user_id)
            db.add(mapping)
            mappings[external_id] = mapping
            created += 1
        else:
            mapping.user_id = user_id
            updated += 1

    record_audit_log(
        db,
        actor_id=principal.id,
        action="LEAD_MAILBOX_MAPPING_BULK_IMPORT",
        resource_type="external_user",
        details={"created": created, "updated": updated, "skipped": skipped},
    )
    await db.commit()
    return MappingBulkResult(created=created, updated=updated, skipped=skipped)
