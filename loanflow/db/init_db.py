import asyncio
import logging
from uuid import uuid4

from sqlalchemy import select

from loanflow.core.permissions import UserRole
from loanflow.core.security import get_password_hash
from loanflow.core.settings import settings
from loanflow.db.session import AsyncSessionLocal
from loanflow.models.task_template import TaskTemplate
from loanflow.models.user import User
from loanflow.schemas.loans import LoanStage

logger = logging.getLogger(__name__)

# (stage, title, description, assigned role, due offset in days)
DEFAULT_TASK_TEMPLATES: list[tuple[LoanStage, str, str, UserRole, int]] = [
    (
        LoanStage.DISCLOSURES_PENDING,
        "Prepare Initial Disclosures",
        "Generate the initial disclosure package for the borrower.",
        UserRole.DISCLOSURE_SPECIALIST,
        1,
    ),
    (
        LoanStage.DISCLOSURES_PENDING,
        "Send Disclosures to Borrower",
        "Deliver the disclosure package and confirm receipt.",
        UserRole.DISCLOSURE_SPECIALIST,
        1,
    ),
    (
        LoanStage.SUBMIT_TO_UW_PREP,
        "Order Appraisal",
        "Order the appraisal from the approved management company.",
        UserRole.VA,
        2,
    ),
    (
        LoanStage.SUBMIT_TO_UW_PREP,
        "Order Title Work",
        "Request the preliminary title report.",
        UserRole.VA,
        2,
    ),
]


async def seed_admin(session) -> bool:
    if not settings.seed_admin_password:
        logger.info("SEED_ADMIN_PASSWORD not set; skipping admin seed")
        return False
    email = settings.seed_admin_email.strip().lower()
    result = await session.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none() is not None:
        return False
    session.add(
        User(
            id=uuid4(),
            name=settings.seed_admin_name,
            email=email,
            role=UserRole.ADMIN.value,
            active=True,
            password_hash=get_password_hash(settings.seed_admin_password),
        )
    )
    logger.info("Seeded admin user %s", email)
    return True


async def seed_task_templates(session) -> int:
    """Insert the default templates once; an existing template table is left alone."""
    if not settings.seed_task_templates:
        return 0
    result = await session.execute(select(TaskTemplate.id).limit(1))
    if result.scalar_one_or_none() is not None:
        return 0
    session.add_all(
        [
            TaskTemplate(
                id=uuid4(),
                stage=stage.value,
                title=title,
                description=description,
                assigned_role=role.value,
                due_offset_days=offset,
            )
            for stage, title, description, role, offset in DEFAULT_TASK_TEMPLATES
        ]
    )
    logger.info("Seeded %d task templates", len(DEFAULT_TASK_TEMPLATES))
    return len(DEFAULT_TASK_TEMPLATES)


async def init_db() -> None:
    async with AsyncSessionLocal() as session:
        admin_created = await seed_admin(session)
        templates_created = await seed_task_templates(session)
        if admin_created or templates_created:
            await session.commit()


if __name__ == "__main__":
    asyncio.run(init_db())
