from slowapi import Limiter
from slowapi.util import get_remote_address

from loanflow.core.settings import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
    storage_uri=settings.redis_url,
)


def login_limit() -> str:
    return f"{settings.login_rate_limit_per_minute}/minute"


def webhook_limit() -> str:
    return f"{settings.rate_limit_per_minute * 5}/minute"


__all__ = ["limiter", "login_limit", "webhook_limit"]
