"""Route handlers for the HTTP bootstrap server."""

from fastapi import APIRouter

from app.routes import health, user

# Create main router
router = APIRouter()

router.include_router(health.router, tags=["Health"])
router.include_router(user.router, tags=["User"])
