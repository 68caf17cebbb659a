import time

from fastapi import Request

BUCKET_TTL_SECONDS = 3600


def client_ip(request: Request) -> str:
    # peer address; X-Forwarded-For is ignored
    return request.client.host if request.client else "unknown"


async def consume_token(redis, key: str, capacity: int, refill_per_sec: float, now: float | None = None) -> bool:
    """Take one token from the bucket stored at ``rl:<key>``.

    Returns False when the bucket is empty. The bucket state is a redis hash of
    ``tokens`` and ``last`` (refill timestamp).
    """
    now = time.time() if now is None else now
    bucket_key = f"rl:{key}"

    state = await redis.hgetall(bucket_key)
    tokens = float(state.get("tokens", capacity))
    last = float(state.get("last", now))
    tokens = min(capacity, tokens + max(0.0, now - last) * refill_per_sec)

    allowed = tokens >= 1.0
    if allowed:
        tokens -= 1.0

    await redis.hset(bucket_key, mapping={"tokens": tokens, "last": now})
    await redis.expire(bucket_key, BUCKET_TTL_SECONDS)
    return allowed
