from functools import lru_cache

from redis import Redis


@lru_cache
def get_redis_client(redis_url: str) -> Redis:
    """Shared client per URL. The connection pool is opened lazily on first command."""
    return Redis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )
