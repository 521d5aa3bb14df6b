import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.core.errors import NotFound, PortalError
from loanflow.core.limiter import limiter, webhook_limit
from loanflow.core.settings import settings
from loanflow.schemas.lead_mailbox import LeadMailboxPayload
from loanflow.services import lead_mailbox as lead_mailbox_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _check_secret(provided: str | None) -> None:
    expected = settings.lead_mailbox_webhook_secret
    if not expected:
        return
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.post("/lead-mailbox")
@limiter.limit(webhook_limit)
async def lead_mailbox_webhook(
    request: Request,
    payload: LeadMailboxPayload,
    webhook_secret: str | None = Header(default=None, alias="X-Webhook-Secret"),
    db: AsyncSession = Depends(deps.get_db_session),
) -> dict:
    """Create a loan from a Lead Mailbox delivery. Re-deliveries report ``duplicate``."""
    _check_secret(webhook_secret)
    try:
        result = await lead_mailbox_service.ingest_lead(db, payload)
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    except PortalError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except Exception as exc:
        logger.exception("Lead Mailbox webhook failed")
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc
    return result.model_dump(mode="json", by_alias=True)
