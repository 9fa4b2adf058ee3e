"""Fixed-window rate limiting service using in-memory storage."""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from app.exceptions import RateLimitExceeded
from app.models.rate_limit import RateLimitBucket, RateLimitDecision

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> float:
    return time.time() * 1000


class RateLimitService:
    """In-memory fixed-window rate limiter keyed by client identifier."""

    def __init__(
        self,
        window_ms: int = 60000,
        max_requests: int = 100,
        max_buckets: int = 10000,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize rate limit service.

        Args:
            window_ms: Window duration in milliseconds
            max_requests: Max requests allowed per key per window
            max_buckets: Max number of keys tracked at once
            clock: Callable returning the current time in milliseconds
        """
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.max_buckets = max_buckets
        self._clock = clock or _wall_clock_ms

        self._buckets: Dict[str, RateLimitBucket] = {}
        self._lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._buckets)

    def _is_expired(self, bucket: RateLimitBucket, now: float) -> bool:
        return now - bucket.window_start >= self.window_ms

    async def consume(self, key: str) -> RateLimitDecision:
        """Count one request for ``key`` and decide whether it is allowed.

        Args:
            key: Rate limit key (client IP)

        Returns:
            RateLimitDecision for this hit
        """
        async with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)

            if bucket is None or self._is_expired(bucket, now):
                if bucket is None:
                    self._make_room(now)
                bucket = RateLimitBucket(count=1, window_start=now)
                self._buckets[key] = bucket
            else:
                bucket.count += 1

            reset_at = bucket.window_start + self.window_ms
            return RateLimitDecision(
                key=key,
                allowed=bucket.count <= self.max_requests,
                limit=self.max_requests,
                count=bucket.count,
                reset_at_ms=reset_at,
                retry_after_ms=max(0.0, reset_at - now),
            )

    async def enforce(self, key: str) -> RateLimitDecision:
        """Consume one request for ``key`` or raise when over the limit.

        Raises:
            RateLimitExceeded: Count for the current window exceeds max_requests
        """
        decision = await self.consume(key)
        if not decision.allowed:
            raise RateLimitExceeded(decision)
        return decision

    async def get_bucket(self, key: str) -> Optional[RateLimitBucket]:
        """Return a copy of the live bucket for ``key``, if any."""
        async with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or self._is_expired(bucket, self._clock()):
                return None
            return RateLimitBucket(count=bucket.count, window_start=bucket.window_start)

    async def reset(self, key: str):
        async with self._lock:
            if self._buckets.pop(key, None) is not None:
                logger.info(f"Reset rate limit for key: {key}")

    async def cleanup_expired(self) -> int:
        """Drop buckets whose window has elapsed.

        Returns:
            Number of buckets removed
        """
        async with self._lock:
            return self._drop_expired(self._clock())

    def _drop_expired(self, now: float) -> int:
        expired_keys = [
            key for key, bucket in self._buckets.items() if self._is_expired(bucket, now)
        ]
        for key in expired_keys:
            del self._buckets[key]

        if expired_keys:
            logger.info(f"Cleaned up {len(expired_keys)} expired rate limit entries")
        return len(expired_keys)

    def _make_room(self, now: float):
        # Caller holds the lock.
        if len(self._buckets) < self.max_buckets:
            return

        self._drop_expired(now)
        if len(self._buckets) < self.max_buckets:
            return

        eviction_count = max(1, self.max_buckets // 10)
        oldest = sorted(self._buckets.items(), key=lambda item: item[1].window_start)
        for key, _ in oldest[:eviction_count]:
            del self._buckets[key]

        logger.warning(
            f"Rate limiter evicted {eviction_count} buckets "
            f"(remaining: {len(self._buckets)})"
        )

    async def start_sweeper(self, interval_ms: int):
        """Start periodic cleanup of expired buckets."""
        if self._sweep_task is not None:
            return
        logger.info(f"Starting rate limit sweeper every {interval_ms}ms")
        self._sweep_task = asyncio.create_task(self._sweep_loop(interval_ms / 1000))

    async def stop_sweeper(self):
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
            logger.info("Stopped rate limit sweeper")

    async def _sweep_loop(self, interval_seconds: float):
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                await self.cleanup_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in rate limit sweep loop: {e}")
