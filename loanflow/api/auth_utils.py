from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.core.security import verify_password
from loanflow.models.user import User
from loanflow.utils.login_security import check_lockout, register_login_attempt

_FAKE_HASH = "$2b$12$EixZaYVK1fsbw1ZfbX3OXePaWrn3ILAWO.P3K.fc8G2.0G7u6g.2"


def constant_time_verify(password_hash: str | None, password: str) -> bool:
    if password_hash:
        return verify_password(password, password_hash)
    # Burn the same bcrypt cost for unknown emails.
    verify_password(password, _FAKE_HASH)
    return False


async def authenticate(db: AsyncSession, email: str, password: str) -> User | None:
    """Return the active user for these credentials, recording the attempt for lockout."""
    identifier = email.strip().lower()
    await check_lockout(identifier)
    result = await db.execute(select(User).where(User.email == identifier))
    user = result.scalar_one_or_none()
    if not constant_time_verify(user.password_hash if user else None, password) or not user.active:
        await register_login_attempt(identifier, success=False)
        return None
    await register_login_attempt(identifier, success=True)
    return user
