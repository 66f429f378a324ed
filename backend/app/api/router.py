"""Top-level router: versioned API under /api, health at the root."""

from __future__ import annotations

from fastapi import APIRouter

from app.api.v1.health import router as health_router
from app.api.v1.router import router as v1_router


router = APIRouter()
router.include_router(v1_router, prefix="/api")
router.include_router(health_router, tags=["health"])
