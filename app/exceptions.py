"""Application exception hierarchy.

Each pipeline stage raises and resolves its own subclasses locally; only
errors outside this hierarchy reach the pipeline's 500 responder.

    AppError (base)
    ├── InvalidRequestBody      → 400
    ├── NotFoundError           → 404
    │   ├── StaticFileNotFound
    │   └── TraversalRejected
    ├── PayloadTooLarge         → 413
    ├── RateLimitExceeded       → 429
    └── RequestTimeout          → 503
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from app.models.rate_limit import RateLimitDecision


class AppError(Exception):
    """Base exception for errors with a client-safe message.

    Attributes:
        message: Text returned to the client
        context: Debug details that are logged but never returned
    """

    status_code: int = 500
    default_message: str = "Internal Server Error"

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.context = context or {}
        super().__init__(self.message)


class InvalidRequestBody(AppError):
    """Request body could not be parsed for its declared content type."""

    status_code = 400
    default_message = "Invalid JSON body"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not Found"


class StaticFileNotFound(NotFoundError):
    """No servable file exists for the requested upload path."""


class TraversalRejected(NotFoundError):
    """Resolved upload path escapes the configured root directory.

    Rendered exactly like a missing file; the attempted path is only logged.
    """


class PayloadTooLarge(AppError):
    status_code = 413
    default_message = "Payload Too Large"


class RateLimitExceeded(AppError):
    """Client exceeded its request budget for the current window."""

    status_code = 429
    default_message = "Too many requests from this IP, please try again later."

    def __init__(self, decision: "RateLimitDecision", message: Optional[str] = None):
        self.decision = decision
        super().__init__(message, context={"key": decision.key, "count": decision.count})


class RequestTimeout(AppError):
    status_code = 503
    default_message = "Request Timeout"
