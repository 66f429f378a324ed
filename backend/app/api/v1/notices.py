"""Notice read endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import get_notice_store
from app.repositories.notice_repo import NoticeStore
from app.schemas.notice import NoticeFilters, NoticeListResponse, NoticeResponse, Pagination
from app.security.auth import Principal, require_api_token


router = APIRouter()


@router.get(
    "/notices",
    response_model=NoticeListResponse,
    summary="List notices",
)
def list_notices(
    location: Optional[str] = Query(None, max_length=10, description="Exact location code"),
    start: Optional[datetime] = Query(None, description="Overlap lower bound (ISO); permanent notices always match"),
    end: Optional[datetime] = Query(None, description="Overlap upper bound (ISO)"),
    purpose: Optional[str] = Query(None, max_length=10),
    scope: Optional[str] = Query(None, max_length=10),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    _principal: Principal = Depends(require_api_token),
    store: NoticeStore = Depends(get_notice_store),
) -> NoticeListResponse:
    """Newest effective-start first; `total` counts all matches, not just this page."""
    filters = NoticeFilters(
        location=location,
        start=start,
        end=end,
        purpose=purpose,
        scope=scope,
        limit=limit,
        offset=offset,
    )
    return NoticeListResponse(
        data=store.query(filters),
        pagination=Pagination(total=store.count(filters), limit=limit, offset=offset),
    )


@router.get(
    "/notices/{identifier:path}",
    response_model=NoticeResponse,
    summary="Get notice by identifier",
)
def get_notice(
    identifier: str,
    _principal: Principal = Depends(require_api_token),
    store: NoticeStore = Depends(get_notice_store),
) -> NoticeResponse:
    # Identifiers contain a slash (A4146/2025), hence the path converter.
    notice = store.get(identifier)
    if notice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notice not found")
    return NoticeResponse(data=notice)
