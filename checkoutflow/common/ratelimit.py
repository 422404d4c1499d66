"""Redis token bucket for the public invoice-creating routes."""

from time import time
from typing import Callable

import redis

from checkoutflow.common.errors import RateLimited
from checkoutflow.common.logging import logger


class TokenBucket:
    """Per-client bucket; capacity and refill rate both equal the per-minute limit."""

    def __init__(self, rdb, limit_per_minute: int, clock: Callable[[], float] = time, ttl_seconds: int = 120):
        self.rdb = rdb
        self.capacity = float(limit_per_minute)
        self.refill_per_sec = self.capacity / 60.0
        self.clock = clock
        self.ttl_seconds = ttl_seconds

    def _take(self, key: str) -> bool:
        now = self.clock()
        values = self.rdb.hmget(key, "tokens", "updated_at")
        tokens = float(values[0]) if values[0] is not None else self.capacity
        updated_at = float(values[1]) if values[1] is not None else now
        elapsed = max(0.0, now - updated_at)
        tokens = min(self.capacity, tokens + elapsed * self.refill_per_sec)

        allowed = tokens >= 1.0
        if allowed:
            tokens -= 1.0
        self.rdb.hset(key, mapping={"tokens": tokens, "updated_at": now})
        self.rdb.expire(key, self.ttl_seconds)
        return allowed

    def enforce(self, client_id: str) -> None:
        """Raise `RateLimited` once the client's bucket is empty.

        Redis errors let the request through with a warning.
        """

        key = f"tokenbucket:checkout:{client_id}"
        try:
            allowed = self._take(key)
        except redis.RedisError as exc:
            logger.warning("rate_limit_unavailable client=%s error=%s", client_id, exc)
            return
        if not allowed:
            logger.info("rate limit exceeded client=%s", client_id)
            raise RateLimited(client=client_id)
