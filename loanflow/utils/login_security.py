from fastapi import HTTPException, status
from redis.exceptions import RedisError

from loanflow.core.settings import settings
from loanflow.utils.redis_client import get_redis_client, redis_key


def _ttl(seconds: int) -> int:
    return max(1, seconds)


async def check_lockout(identifier: str) -> None:
    redis = get_redis_client()
    try:
        locked = await redis.get(redis_key("login", "lock", identifier))
    except RedisError:
        return
    if locked:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts; try later",
        )


async def register_login_attempt(identifier: str, success: bool) -> None:
    redis = get_redis_client()
    fail_key = redis_key("login", "fail", identifier)
    lock_key = redis_key("login", "lock", identifier)
    lock_seconds = _ttl(settings.login_lockout_minutes * 60)
    try:
        if success:
            await redis.delete(fail_key, lock_key)
            return
        attempts = await redis.incr(fail_key)
        await redis.expire(fail_key, lock_seconds)
        if attempts >= settings.login_attempt_limit:
            await redis.setex(lock_key, lock_seconds, 1)
            await redis.delete(fail_key)
    except RedisError:
        return
