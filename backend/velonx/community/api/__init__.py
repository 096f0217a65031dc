"""Community HTTP routers."""

from fastapi import APIRouter

from . import moderation, notifications

router = APIRouter()
router.include_router(moderation.router)
router.include_router(notifications.router)

__all__ = ["router"]
