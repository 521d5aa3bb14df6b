from fastapi import APIRouter

from loanflow.api.v1.routers import (
    admin_lead_mailbox,
    admin_users,
    attachments,
    auth,
    client_folders,
    health,
    loans,
    pipeline,
    storage_local,
    tasks,
    team,
    webhooks,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(loans.router)
api_router.include_router(pipeline.router)
api_router.include_router(tasks.router)
api_router.include_router(attachments.router)
api_router.include_router(client_folders.router)
api_router.include_router(webhooks.router)
api_router.include_router(admin_users.router)
api_router.include_router(admin_lead_mailbox.router)
api_router.include_router(team.router)
api_router.include_router(storage_local.router)

__all__ = ["api_router"]
