from functools import lru_cache

from redis import Redis

from app.core.config import settings


@lru_cache(maxsize=1)
def get_redis_client() -> Redis:
    return Redis.from_url(
        settings.cache_redis_url,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )
