from redis.asyncio import Redis

from loanflow.core.settings import settings

KEY_PREFIX = "loanflow"

_client: Redis | None = None


def redis_key(*parts: str) -> str:
    """Namespace a key so the portal can share a Redis database."""
    return ":".join((KEY_PREFIX, *parts))


def get_redis_client() -> Redis:
    global _client
    if _client is None:
        _client = Redis.from_url(settings.redis_url, decode_responses=True)
    return _client


async def close_redis_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
