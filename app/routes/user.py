"""User endpoints."""

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from app.models.response import UserResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.api_route("/user", methods=["GET", "HEAD"])
async def get_user():
    try:
        payload = UserResponse(success=True, message="the user fetched successfully")
        return JSONResponse(status_code=status.HTTP_200_OK, content=payload.model_dump())
    except Exception as e:
        logger.exception(f"Error in get user handler: {e}")
        payload = UserResponse(success=False, message="Error in get User Module")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=payload.model_dump(),
        )
