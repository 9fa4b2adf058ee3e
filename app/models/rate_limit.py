"""Rate limiter state models."""

import math
from dataclasses import dataclass
from typing import Dict


@dataclass
class RateLimitBucket:
    """Request count for one client inside one fixed window.

    The count is only meaningful while ``now - window_start < window_ms``.
    """

    count: int
    window_start: float  # milliseconds, same clock as the owning service


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single rate limiter hit."""

    key: str
    allowed: bool
    limit: int
    count: int
    reset_at_ms: float
    retry_after_ms: float

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def retry_after_seconds(self) -> int:
        return math.ceil(self.retry_after_ms / 1000)

    def headers(self) -> Dict[str, str]:
        """Informational headers describing the client's current budget."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at_ms / 1000)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers
