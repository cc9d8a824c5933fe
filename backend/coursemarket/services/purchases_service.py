from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from psycopg import errors as pg_errors

from .. import metrics
from ..auth import SessionContext
from ..errors import AuthRequiredError, ConflictError, NotFoundError, ValidationError
from ..repositories import cart as cart_repo
from ..repositories import courses as courses_repo
from ..repositories import purchases as purchases_repo

logger = logging.getLogger(__name__)

FREE_REFERENCE_PREFIX = "free"


@dataclass(frozen=True, slots=True)
class CartToggleResult:
    in_cart: bool
    course_id: str
    item: dict[str, Any] | None = None


def _require_viewer(session: SessionContext) -> str:
    if not session.is_authenticated or session.user_id is None:
        raise AuthRequiredError()
    return session.user_id


def free_payment_reference(course_id: str, user_id: str) -> str:
    return f"{FREE_REFERENCE_PREFIX}-{course_id}-{user_id}-{int(time.time() * 1000)}"


async def toggle_cart(session: SessionContext, course_id: str) -> CartToggleResult:
    """Flip cart membership for the viewer and report the resulting state.

    The database pair constraint settles concurrent toggles; the result
    always reflects what the store holds after this call.
    """

    user_id = _require_viewer(session)
    course = await courses_repo.get_course(course_id)
    if not course:
        raise NotFoundError("course not found")
    if await purchases_repo.get_active_purchase(user_id, course_id):
        raise ConflictError("already purchased")

    existing = await cart_repo.get_cart_item(user_id, course_id)
    if existing:
        await cart_repo.remove_cart_item(user_id, course_id)
        return CartToggleResult(in_cart=False, course_id=course_id)

    item = await cart_repo.add_cart_item(user_id, course_id)
    return CartToggleResult(in_cart=True, course_id=course_id, item=item)


async def list_cart(session: SessionContext) -> dict[str, Any]:
    user_id = _require_viewer(session)
    items = await cart_repo.list_cart_items(user_id)
    total = sum(int(item.get("course_price") or 0) for item in items)
    return {"items": items, "total": total}


async def remove_cart_item(session: SessionContext, course_id: str) -> bool:
    user_id = _require_viewer(session)
    return await cart_repo.remove_cart_item(user_id, course_id)


async def free_enroll(session: SessionContext, course_id: str) -> dict[str, Any]:
    """Record a zero-amount purchase for a free course.

    A second enrollment for the same pair, from any tab or device, raises
    ``ConflictError``; the HTTP layer reports it as already enrolled.
    """

    user_id = _require_viewer(session)
    course = await courses_repo.get_course(course_id)
    if not course:
        raise NotFoundError("course not found")
    if int(course.get("price") or 0) != 0:
        raise ValidationError("course is not free")

    try:
        purchase = await purchases_repo.create_purchase(
            user_id=user_id,
            course_id=course_id,
            amount=0,
            payment_reference=free_payment_reference(course_id, user_id),
            status="completed",
        )
    except pg_errors.UniqueViolation as exc:
        raise ConflictError("already enrolled") from exc

    metrics.free_enrollments_total.inc()
    logger.info(
        "Free enrollment recorded",
        extra={"course_id": course_id, "purchase_id": str(purchase.get("id"))},
    )
    await cart_repo.remove_cart_item(user_id, course_id)
    return purchase


async def refund_purchase(purchase_id: str) -> dict[str, Any]:
    purchase = await purchases_repo.refund_purchase(purchase_id)
    if not purchase:
        raise NotFoundError("completed purchase not found")
    logger.info(
        "Purchase refunded",
        extra={"purchase_id": purchase_id, "course_id": str(purchase.get("course_id"))},
    )
    return purchase


__all__ = [
    "CartToggleResult",
    "free_enroll",
    "free_payment_reference",
    "list_cart",
    "refund_purchase",
    "remove_cart_item",
    "toggle_cart",
]
