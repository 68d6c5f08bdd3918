"""
Maiat — Rate Limiting
Redis-backed sliding window rate limiter, keyed by an arbitrary identifier
(reviewer address, review id). Without Redis every request is allowed.
"""
import hashlib
import time

from fastapi import HTTPException
import structlog

logger = structlog.get_logger()


def _rate_key(identifier: str, endpoint: str) -> str:
    digest = hashlib.sha256(identifier.lower().encode()).hexdigest()[:16]
    return f"rl:{endpoint}:{digest}"


async def check_rate_limit(
    redis_client,
    identifier: str,
    endpoint: str,
    max_requests: int,
    window_seconds: int = 3600,
) -> None:
    """
    Sliding window rate limiter using a Redis sorted set.
    Raises 429 if limit exceeded. Fails open when Redis is absent or erroring.
    """
    if redis_client is None:
        return

    key = _rate_key(identifier, endpoint)
    now = time.time()
    window_start = now - window_seconds

    try:
        pipe = redis_client.pipeline()
        pipe.zremrangebyscore(key, 0, window_start)
        pipe.zcard(key)
        pipe.zadd(key, {f"{now}": now})
        pipe.expire(key, window_seconds + 1)
        results = pipe.execute()

        current_count = results[1]
        if current_count >= max_requests:
            oldest = redis_client.zrange(key, 0, 0, withscores=True)
            retry_after = int(window_seconds - (now - oldest[0][1])) + 1 if oldest else window_seconds

            logger.warning("rate_limit_exceeded",
                           endpoint=endpoint, count=current_count, limit=max_requests)
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded. Max {max_requests} requests per {window_seconds}s.",
                headers={"Retry-After": str(retry_after)},
            )
    except HTTPException:
        raise
    except Exception as e:
        logger.warning("rate_limit_check_failed", endpoint=endpoint, error=str(e))
