"""Decide whether a viewer may play a lesson or download an e-book.

Resolution runs per item on every request. Preview status varies per
lesson, so nothing is cached per viewer. Any failure while reading the
purchase store resolves to the most restrictive state for the viewer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from psycopg import Error as DatabaseError

from .. import metrics
from ..auth import SessionContext
from ..errors import AuthRequiredError, EntitlementError, NotFoundError
from ..repositories import courses as courses_repo
from ..repositories import ebooks as ebooks_repo
from ..repositories import purchases as purchases_repo

logger = logging.getLogger(__name__)


class AccessState(str, Enum):
    loading = "loading"
    anonymous = "anonymous"
    unentitled = "unentitled"
    entitled = "entitled"


@dataclass(frozen=True, slots=True)
class AccessDecision:
    state: AccessState
    course_id: str
    reason: str
    lesson_id: str | None = None
    is_preview: bool = False
    media_available: bool = True

    @property
    def entitled(self) -> bool:
        return self.state is AccessState.entitled


def _is_owner(session: SessionContext, course: Mapping[str, Any]) -> bool:
    if not session.is_authenticated:
        return False
    if session.is_admin:
        return True
    creator_id = course.get("creator_id")
    return creator_id is not None and str(creator_id) == session.user_id


def _restrictive_state(session: SessionContext) -> AccessState:
    return AccessState.unentitled if session.is_authenticated else AccessState.anonymous


async def _resolve(
    session: SessionContext,
    course: Mapping[str, Any],
    *,
    is_preview: bool,
) -> tuple[AccessState, str]:
    if is_preview:
        return AccessState.entitled, "preview"
    if int(course.get("price") or 0) == 0:
        return AccessState.entitled, "free"
    if not session.is_authenticated:
        return AccessState.anonymous, "login required"
    if _is_owner(session, course):
        return AccessState.entitled, "owner"

    try:
        purchase = await purchases_repo.get_active_purchase(session.user_id, str(course["id"]))
    except DatabaseError:
        metrics.entitlement_store_failures_total.inc()
        logger.warning(
            "Purchase lookup failed; denying access",
            exc_info=True,
            extra={"course_id": str(course.get("id"))},
        )
        return _restrictive_state(session), "store unavailable"
    if purchase:
        return AccessState.entitled, "purchased"
    return AccessState.unentitled, "purchase required"


async def resolve_lesson_access(
    session: SessionContext,
    lesson: Mapping[str, Any],
    course: Mapping[str, Any],
) -> AccessDecision:
    is_preview = bool(lesson.get("is_preview"))
    state, reason = await _resolve(session, course, is_preview=is_preview)
    metrics.entitlement_decisions_total.labels(state=state.value).inc()
    return AccessDecision(
        state=state,
        course_id=str(course["id"]),
        lesson_id=str(lesson["id"]),
        reason=reason,
        is_preview=is_preview,
        media_available=bool(lesson.get("media_id")),
    )


async def resolve_course_access(
    session: SessionContext,
    course: Mapping[str, Any],
) -> AccessDecision:
    state, reason = await _resolve(session, course, is_preview=False)
    metrics.entitlement_decisions_total.labels(state=state.value).inc()
    return AccessDecision(state=state, course_id=str(course["id"]), reason=reason)


async def load_lesson_and_course(
    session: SessionContext,
    lesson_id: str,
) -> tuple[dict[str, Any], dict[str, Any]]:
    lesson = await courses_repo.get_lesson(lesson_id)
    if not lesson:
        raise NotFoundError("lesson not found")
    course = await courses_repo.get_course(str(lesson["course_id"]))
    if not course:
        raise NotFoundError("course not found")
    if not course.get("is_published") and not _is_owner(session, course):
        raise NotFoundError("course not found")
    return lesson, course


async def resolve_lesson_access_by_id(
    session: SessionContext,
    lesson_id: str,
) -> AccessDecision:
    lesson, course = await load_lesson_and_course(session, lesson_id)
    return await resolve_lesson_access(session, lesson, course)


def require_entitlement(decision: AccessDecision) -> None:
    if decision.state is AccessState.entitled:
        return
    if decision.state is AccessState.anonymous:
        raise AuthRequiredError()
    raise EntitlementError(course_id=decision.course_id)


@dataclass(frozen=True, slots=True)
class EbookAccess:
    state: AccessState
    ebook_id: str
    reason: str
    purchase: dict[str, Any] | None = None

    @property
    def entitled(self) -> bool:
        return self.state is AccessState.entitled


async def resolve_ebook_access(session: SessionContext, ebook: Mapping[str, Any]) -> EbookAccess:
    """Decide whether the viewer may download the full e-book file.

    Unlike free courses, a free e-book still needs an enrollment row; the
    download counter lives on it.
    """

    ebook_id = str(ebook["id"])
    if not session.is_authenticated:
        state, reason, purchase = AccessState.anonymous, "login required", None
    elif _is_owner(session, ebook):
        state, reason, purchase = AccessState.entitled, "owner", None
    else:
        try:
            purchase = await ebooks_repo.get_active_ebook_purchase(session.user_id, ebook_id)
        except DatabaseError:
            metrics.entitlement_store_failures_total.inc()
            logger.warning(
                "E-book purchase lookup failed; denying download",
                exc_info=True,
                extra={"ebook_id": ebook_id},
            )
            purchase = None
            state, reason = AccessState.unentitled, "store unavailable"
        else:
            if purchase:
                state, reason = AccessState.entitled, "purchased"
            else:
                state, reason = AccessState.unentitled, "purchase required"
    metrics.entitlement_decisions_total.labels(state=state.value).inc()
    return EbookAccess(state=state, ebook_id=ebook_id, reason=reason, purchase=purchase)


def require_ebook_entitlement(access: EbookAccess) -> None:
    if access.state is AccessState.entitled:
        return
    if access.state is AccessState.anonymous:
        raise AuthRequiredError()
    raise EntitlementError(ebook_id=access.ebook_id)


async def owned_course_ids(session: SessionContext) -> set[str]:
    if not session.is_authenticated:
        return set()
    rows = await purchases_repo.list_user_purchases(session.user_id)
    return {str(row["course_id"]) for row in rows}


__all__ = [
    "AccessDecision",
    "AccessState",
    "EbookAccess",
    "load_lesson_and_course",
    "owned_course_ids",
    "require_ebook_entitlement",
    "require_entitlement",
    "resolve_course_access",
    "resolve_ebook_access",
    "resolve_lesson_access",
    "resolve_lesson_access_by_id",
]
