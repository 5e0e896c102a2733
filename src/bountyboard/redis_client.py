"""Redis client shared by the rate limiter and the notification push."""

import redis.asyncio as redis

_pool: redis.Redis | None = None


def user_channel(user_id: int) -> str:
    """Pub/sub channel carrying a user's live notifications."""
    return f"ws:user:{user_id}"


async def init_redis(url: str) -> None:
    global _pool  # noqa: PLW0603
    _pool = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )


async def close_redis() -> None:
    global _pool  # noqa: PLW0603
    if _pool:
        await _pool.aclose()
        _pool = None


def get_redis() -> redis.Redis:
    """The shared client. Raises RuntimeError before ``init_redis``."""
    if _pool is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _pool


def get_optional_redis() -> redis.Redis | None:
    """FastAPI dependency for best-effort pushes: None when Redis was never started."""
    return _pool
