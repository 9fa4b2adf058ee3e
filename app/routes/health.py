"""Health check endpoint."""

import os

from fastapi import APIRouter, status

from app.models.response import HealthResponse

router = APIRouter()


@router.api_route(
    "/",
    methods=["GET", "HEAD"],
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health():
    """Liveness check.

    Reports the serving process id so callers can tell workers apart.
    Exempt from rate limiting.
    """
    return HealthResponse(ok=True, pid=os.getpid())
