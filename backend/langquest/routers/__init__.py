"""
API routers for LangQuest.

This module contains all API endpoint routers:
- courses: Course listing and active course selection
- progress: Dashboard, hearts, points, leaderboard and quests
- webhooks: Payment provider notifications
"""

from fastapi import APIRouter

# Import individual routers
from .courses import router as courses_router
from .progress import router as progress_router
from .webhooks import router as webhooks_router

# Create main API router
api_router = APIRouter()

# Include all routers with their prefixes
api_router.include_router(
    courses_router,
    prefix="/courses",
    tags=["courses"]
)

api_router.include_router(
    progress_router,
    prefix="/progress",
    tags=["progress"]
)

api_router.include_router(
    webhooks_router,
    prefix="/webhooks",
    tags=["webhooks"]
)

# Export all routers
__all__ = [
    "api_router",
    "courses_router",
    "progress_router",
    "webhooks_router"
]
