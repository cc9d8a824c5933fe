from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from ..auth import AdminSession, CreatorSession
from ..services import revenue

router = APIRouter(prefix="/api/revenue", tags=["revenue"])


@router.get("/creator")
async def creator_revenue(
    session: CreatorSession,
    creator_id: UUID | None = Query(default=None),
) -> dict[str, Any]:
    target = str(creator_id) if creator_id else session.user_id
    if target != session.user_id and not session.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="admin role required to view another creator",
        )
    return await revenue.creator_dashboard(str(target))


@router.get("/platform")
async def platform_revenue(session: AdminSession) -> dict[str, Any]:
    return await revenue.platform_dashboard()
