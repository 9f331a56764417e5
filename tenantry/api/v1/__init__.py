"""
API v1 Router

All org-scoped endpoints are prefixed with /orgs/{orgSlug}.
"""

from fastapi import APIRouter

from . import auth, organizations, settings, tasks

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["Auth"])
router.include_router(organizations.router, prefix="/orgs", tags=["Organizations"])
router.include_router(tasks.router, prefix="/orgs/{orgSlug}/tasks", tags=["Tasks"])
router.include_router(settings.router, prefix="/settings", tags=["Settings"])


@router.get("/", tags=["API"])
async def api_root():
    """API root — returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/auth",
            "/orgs",
            "/orgs/{orgSlug}/members",
            "/orgs/{orgSlug}/invitations",
            "/orgs/{orgSlug}/tasks",
            "/settings",
        ],
    }
