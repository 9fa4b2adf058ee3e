"""Response models for the HTTP surface."""

from pydantic import BaseModel, ConfigDict


class ErrorResponse(BaseModel):
    """Error envelope shared by every non-2xx response."""

    error: str

    model_config = ConfigDict(json_schema_extra={"example": {"error": "Not Found"}})


class HealthResponse(BaseModel):
    """Health check response."""

    ok: bool
    pid: int

    model_config = ConfigDict(json_schema_extra={"example": {"ok": True, "pid": 4242}})


class UserResponse(BaseModel):
    success: bool
    message: str

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": True,
                "message": "the user fetched successfully",
            }
        }
    )
