from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api.deps import Principal
from loanflow.core.errors import NotAuthenticated, PortalError
from loanflow.schemas.common import ActionResult

logger = logging.getLogger(__name__)


async def run_action(
    db: AsyncSession,
    principal: Principal | None,
    action: Callable[[Principal], Awaitable[Any]],
    *,
    failure_message: str,
) -> ActionResult:
    """Run ``action`` and fold every failure into ``{success: false, error}``.

    Domain errors surface their own message; anything else is logged with its
    stack trace and reported as ``failure_message``. The session is rolled
    back on every failure.
    """
    if principal is None:
        return ActionResult.fail(NotAuthenticated.default_message)
    try:
        data = await action(principal)
    except PortalError as exc:
        await db.rollback()
        return ActionResult.fail(exc.message)
    except Exception:
        logger.exception("%s (user=%s)", failure_message, principal.id)
        await db.rollback()
        return ActionResult.fail(failure_message)
    return ActionResult.ok(data)
