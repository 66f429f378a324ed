"""API v1 root router."""

from __future__ import annotations

from fastapi import APIRouter

from app.api.v1.notices import router as notices_router


router = APIRouter()
router.include_router(notices_router, tags=["notices"])
