"""JSON API routes for the token service."""
from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from gmail_connect.api.admin import router as admin_router
from gmail_connect.api.auth import router as auth_router
from gmail_connect.core.config import Settings, get_settings

router = APIRouter()
router.include_router(auth_router)
router.include_router(admin_router)


@router.get("/health", tags=["health"])
async def health_check(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    """Report the service liveness information."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "version": settings.version,
    }
