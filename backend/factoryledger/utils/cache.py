"""Redis caching for read-heavy stock endpoints.

Only derived views are cached (the low-stock listing); ledger and lot reads
always hit the database.  Every posting queues ``stock:*`` for invalidation,
which runs right after the request transaction commits.

Redis being down is not an error: reads fall back to the wrapped function
and invalidation failures are logged.  ``settings.cache_enabled = False``
skips Redis entirely (tests, single-node dev).
"""

import functools
import hashlib
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

import redis.asyncio as redis

from factoryledger.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Shared client, created on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close the shared client (app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def cache_key(**kwargs) -> str:
    if not kwargs:
        return "default"
    key_data = json.dumps(kwargs, sort_keys=True)
    return hashlib.md5(key_data.encode()).hexdigest()


def _key_kwargs(kwargs: dict) -> dict:
    # Injected objects (sessions, actors) never take part in the key
    key_kwargs = {}
    for k, v in kwargs.items():
        if k.startswith("_"):
            continue
        if isinstance(v, (int, str, bool, float, type(None))):
            key_kwargs[k] = v
        elif isinstance(v, (date, datetime)):
            key_kwargs[k] = v.isoformat()
        elif isinstance(v, Decimal):
            key_kwargs[k] = str(v)
    return key_kwargs


def _serialize(result):
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json")
    if isinstance(result, list) and result and hasattr(result[0], "model_dump"):
        return [item.model_dump(mode="json") for item in result]
    return result


def cached(ttl: int = 300, prefix: str = "cache"):
    """Cache an async endpoint's result in Redis under ``{prefix}:{func}:{hash}``.

    Example:
        @cached(ttl=settings.low_stock_cache_ttl, prefix="stock")
        async def low_stock(db: AsyncSession = Depends(get_db)):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not settings.cache_enabled:
                return await func(*args, **kwargs)

            key = f"{prefix}:{func.__name__}:{cache_key(**_key_kwargs(kwargs))}"
            try:
                client = await get_redis()
                hit = await client.get(key)
                if hit:
                    logger.debug(f"Cache HIT: {key}")
                    return json.loads(hit)
                logger.debug(f"Cache MISS: {key}")

                result = await func(*args, **kwargs)
                await client.setex(key, ttl, json.dumps(_serialize(result)))
                return result
            except redis.RedisError as e:
                logger.warning(f"Redis error (falling back to uncached): {e}")
                return await func(*args, **kwargs)

        return wrapper

    return decorator


async def invalidate_cache(pattern: str):
    """Delete every key matching ``pattern`` (e.g. ``"stock:*"``)."""
    if not settings.cache_enabled:
        return
    try:
        client = await get_redis()
        keys = [key async for key in client.scan_iter(match=pattern)]
        if keys:
            await client.delete(*keys)
            logger.info(f"Invalidated {len(keys)} cache keys matching {pattern}")
    except redis.RedisError as e:
        logger.warning(f"Failed to invalidate cache: {e}")


# Patterns queued on a session; cleared only once its transaction commits
PENDING_INVALIDATIONS = "pending_cache_invalidations"


def invalidate_on_commit(db, pattern: str):
    """Queue ``pattern`` for invalidation once the request transaction commits.

    ``factoryledger.database.request_session`` runs the queue after commit
    and drops it on rollback.
    """
    db.info.setdefault(PENDING_INVALIDATIONS, set()).add(pattern)


def discard_pending_invalidations(db):
    db.info.pop(PENDING_INVALIDATIONS, None)


async def run_pending_invalidations(db):
    for pattern in sorted(db.info.pop(PENDING_INVALIDATIONS, ())):
        await invalidate_cache(pattern)
