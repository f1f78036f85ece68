"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from coremine.redis_client import get_redis as _get_redis


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client, or None when Redis is not initialised.

    Publishing is fire-and-forget, so the API keeps serving without Redis.
    """
    try:
        client: object = _get_redis()
    except RuntimeError:
        client = None
    yield client
