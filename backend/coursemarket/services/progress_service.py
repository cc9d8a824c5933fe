from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from ..auth import SessionContext
from ..errors import AuthRequiredError, NotFoundError, ValidationError
from ..repositories import courses as courses_repo
from ..repositories import progress as progress_repo
from ..repositories import purchases as purchases_repo
from . import entitlements

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CourseProgress:
    course_id: str
    completed_lessons: int
    total_lessons: int

    @property
    def percent(self) -> int:
        return progress_percent(self.completed_lessons, self.total_lessons)

    def as_dict(self) -> dict[str, Any]:
        return {
            "course_id": self.course_id,
            "completed_lessons": self.completed_lessons,
            "total_lessons": self.total_lessons,
            "percent": self.percent,
        }


def progress_percent(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    completed = min(max(completed, 0), total)
    ratio = Decimal(completed) * 100 / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _require_viewer(session: SessionContext) -> str:
    if not session.is_authenticated or session.user_id is None:
        raise AuthRequiredError()
    return session.user_id


async def mark_complete(session: SessionContext, lesson_id: str) -> dict[str, Any]:
    """Record that the viewer finished a lesson.

    The first call sets ``completed_at``; later calls only move
    ``last_watched_at`` forward.
    """

    user_id = _require_viewer(session)
    lesson, course = await entitlements.load_lesson_and_course(session, lesson_id)
    if lesson.get("is_preview"):
        raise ValidationError("preview lessons do not track progress")
    decision = await entitlements.resolve_lesson_access(session, lesson, course)
    entitlements.require_entitlement(decision)

    record = await progress_repo.upsert_completion(user_id, lesson_id, str(course["id"]))
    logger.debug("Lesson marked complete", extra={"lesson_id": lesson_id})
    return record


async def lesson_progress(session: SessionContext, lesson_id: str) -> dict[str, Any]:
    user_id = _require_viewer(session)
    record = await progress_repo.get_progress(user_id, lesson_id)
    return {
        "lesson_id": lesson_id,
        "completed": bool(record and record.get("completed")),
        "completed_at": record.get("completed_at") if record else None,
        "last_watched_at": record.get("last_watched_at") if record else None,
    }


async def course_progress(session: SessionContext, course_id: str) -> CourseProgress:
    user_id = _require_viewer(session)
    course = await courses_repo.get_course(course_id)
    if not course:
        raise NotFoundError("course not found")
    total = await courses_repo.count_course_lessons(course_id)
    completed = await progress_repo.count_completed(user_id, course_id)
    return CourseProgress(course_id=course_id, completed_lessons=completed, total_lessons=total)


async def my_courses(session: SessionContext) -> list[dict[str, Any]]:
    """Owned courses, most recent purchase first, each with its progress."""

    user_id = _require_viewer(session)
    purchases = await purchases_repo.list_user_purchases(user_id)
    ordered = list(dict.fromkeys(str(row["course_id"]) for row in purchases))
    courses = {
        str(course["id"]): course
        for course in await courses_repo.list_courses_by_ids(ordered)
    }
    items: list[dict[str, Any]] = []
    for course_id in ordered:
        course = courses.get(course_id)
        if course is None:
            continue
        progress = await course_progress(session, course_id)
        items.append(
            {
                "course_id": course_id,
                "title": course.get("title"),
                "price": int(course.get("price") or 0),
                "progress": progress.as_dict(),
            }
        )
    return items


__all__ = [
    "CourseProgress",
    "course_progress",
    "lesson_progress",
    "mark_complete",
    "my_courses",
    "progress_percent",
]
