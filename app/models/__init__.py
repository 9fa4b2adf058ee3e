"""Data models for the HTTP bootstrap server."""

from app.models.rate_limit import RateLimitBucket, RateLimitDecision
from app.models.response import ErrorResponse, HealthResponse, UserResponse

__all__ = [
    "RateLimitBucket",
    "RateLimitDecision",
    "ErrorResponse",
    "HealthResponse",
    "UserResponse",
]
