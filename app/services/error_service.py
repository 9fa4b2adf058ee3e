"""Error handling and standardization service."""

import logging
from typing import Any, Dict, Mapping, Optional

from fastapi import status
from fastapi.responses import JSONResponse

from app.exceptions import AppError
from app.models.response import ErrorResponse

logger = logging.getLogger(__name__)


class ErrorService:
    """Service for error handling and standardization."""

    @staticmethod
    def create_error_response(message: str) -> ErrorResponse:
        """Create standardized error body.

        Args:
            message: Client-safe error message

        Returns:
            ErrorResponse object
        """
        return ErrorResponse(error=message)

    @staticmethod
    def error_json(
        status_code: int,
        message: str,
        headers: Optional[Mapping[str, str]] = None,
    ) -> JSONResponse:
        """Render an error body as a JSON response."""
        return JSONResponse(
            status_code=status_code,
            content=ErrorService.create_error_response(message).model_dump(),
            headers=dict(headers) if headers else None,
        )

    @staticmethod
    def from_exception(
        exc: AppError, headers: Optional[Mapping[str, str]] = None
    ) -> JSONResponse:
        return ErrorService.error_json(exc.status_code, exc.message, headers=headers)

    @staticmethod
    def not_found() -> JSONResponse:
        return ErrorService.error_json(status.HTTP_404_NOT_FOUND, "Not Found")

    @staticmethod
    def internal_error() -> JSONResponse:
        return ErrorService.error_json(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error"
        )

    @staticmethod
    def log_error(
        status_code: int,
        message: str,
        path: Optional[str] = None,
        client_ip: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Log error with context.

        Args:
            status_code: HTTP status returned to the client
            message: Error message
            path: Request path
            client_ip: Client address
            details: Additional details
        """
        log_data: Dict[str, Any] = {
            "status_code": status_code,
            "message": message,
        }

        if path:
            log_data["path"] = path
        if client_ip:
            log_data["client_ip"] = client_ip
        if details:
            log_data["details"] = details

        if status_code >= 500:
            logger.error(f"Error: {log_data}")
        else:
            logger.warning(f"Error: {log_data}")
