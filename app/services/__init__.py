"""Core services for the HTTP bootstrap server."""

from app.services.error_service import ErrorService
from app.services.rate_limit_service import RateLimitService
from app.services.static_file_service import StaticFileService

__all__ = [
    "ErrorService",
    "RateLimitService",
    "StaticFileService",
]
