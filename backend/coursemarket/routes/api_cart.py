from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, status

from .. import schemas
from ..auth import CurrentSession
from ..services import purchases_service

router = APIRouter(prefix="/api/cart", tags=["cart"])


@router.get("", response_model=schemas.CartListResponse)
async def list_cart(session: CurrentSession) -> schemas.CartListResponse:
    cart = await purchases_service.list_cart(session)
    return schemas.CartListResponse(**cart)


@router.post("/toggle", response_model=schemas.CartToggleResponse)
async def toggle_cart(
    payload: schemas.CourseRef,
    session: CurrentSession,
) -> schemas.CartToggleResponse:
    result = await purchases_service.toggle_cart(session, str(payload.course_id))
    return schemas.CartToggleResponse(
        course_id=result.course_id,
        in_cart=result.in_cart,
        item=result.item,
    )


@router.delete("/{course_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_cart_item(course_id: UUID, session: CurrentSession) -> None:
    await purchases_service.remove_cart_item(session, str(course_id))
