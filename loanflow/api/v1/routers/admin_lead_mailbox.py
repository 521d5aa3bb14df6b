from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import NotAuthorized
from loanflow.core.permissions import Capability
from loanflow.schemas.common import ActionResult
from loanflow.schemas.lead_mailbox import MappingBulkUpsert, MappingUpsert
from loanflow.services import lead_mailbox as lead_mailbox_service
from loanflow.services.actions import run_action

router = APIRouter(prefix="/admin/lead-mailbox", tags=["admin-lead-mailbox"])


def _manager(action):
    async def guarded(principal: deps.Principal):
        if not principal.can(Capability.LEAD_MAILBOX_MANAGE):
            raise NotAuthorized()
        return await action(principal)

    return guarded


@router.get("/mappings", response_model=ActionResult)
async def list_mappings(
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _manager(lambda caller: lead_mailbox_service.list_mappings(db)),
        failure_message="Failed to load mappings",
    )


@router.put("/mappings", response_model=ActionResult)
async def upsert_mapping(
    payload: MappingUpsert,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _manager(lambda caller: lead_mailbox_service.upsert_mapping(db, caller, payload)),
        failure_message="Failed to save mapping",
    )


@router.post("/mappings/bulk", response_model=ActionResult)
async def bulk_upsert(
    payload: MappingBulkUpsert,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _manager(lambda caller: lead_mailbox_service.bulk_upsert_mappings(db, caller, payload.mappings)),
        failure_message="Failed to import mappings",
    )


@router.delete("/mappings/{mapping_id}", response_model=ActionResult)
async def delete_mapping(
    mapping_id: UUID,
    principal: deps.Principal | None = Depends(deps.get_optional_principal),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ActionResult:
    return await run_action(
        db,
        principal,
        _manager(lambda caller: lead_mailbox_service.delete_mapping(db, caller, mapping_id)),
        failure_message="Failed to delete mapping",
    )
