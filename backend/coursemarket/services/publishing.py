from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping, Sequence

from psycopg import errors as pg_errors

from .. import metrics
from ..auth import SessionContext
from ..config import settings
from ..errors import (
    AuthRequiredError,
    ConflictError,
    EntitlementError,
    MediaReleaseError,
    NotFoundError,
    ValidationError,
)
from ..repositories import courses as courses_repo
from ..repositories import purchases as purchases_repo
from . import video_host

logger = logging.getLogger(__name__)


class PublishState(str, Enum):
    draft = "draft"
    published = "published"


def publish_state(course: Mapping[str, Any]) -> PublishState:
    return PublishState.published if course.get("is_published") else PublishState.draft


def check_publish_readiness(
    course: Mapping[str, Any],
    chapters: Sequence[Mapping[str, Any]],
    tag_count: int,
) -> list[str]:
    """Return every unmet publish precondition; an empty list means ready."""

    missing: list[str] = []
    if not (course.get("title") or "").strip():
        missing.append("title is required")
    if not (course.get("description") or "").strip():
        missing.append("description is required")
    if not chapters:
        missing.append("no chapters")
    for chapter in chapters:
        if not chapter.get("lessons"):
            missing.append(f"chapter '{chapter.get('title') or ''}' has no lessons")
    if tag_count < settings.course_tags_min:
        missing.append(f"at least {settings.course_tags_min} tags required")
    if tag_count > settings.course_tags_max:
        missing.append(f"at most {settings.course_tags_max} tags allowed")
    return missing


async def _load_owned_course(session: SessionContext, course_id: str) -> dict[str, Any]:
    if not session.is_authenticated:
        raise AuthRequiredError()
    course = await courses_repo.get_course(course_id)
    if not course:
        raise NotFoundError("course not found")
    if not session.is_admin and str(course.get("creator_id")) != session.user_id:
        raise EntitlementError("only the course owner may change this course", course_id=course_id)
    return course


async def readiness(session: SessionContext, course_id: str) -> dict[str, Any]:
    course = await _load_owned_course(session, course_id)
    chapters = await courses_repo.list_chapters_with_lessons(course_id)
    tag_count = await courses_repo.count_course_tags(course_id)
    missing = check_publish_readiness(course, chapters, tag_count)
    return {
        "course_id": course_id,
        "state": publish_state(course).value,
        "ready": not missing,
        "missing": missing,
    }


async def publish_course(
    session: SessionContext,
    course_id: str,
    edits: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Save the latest edits, then publish if every precondition holds.

    Preconditions are evaluated against the stored course immediately before
    the flag flips, so edits made in the same request are what gets checked.
    """

    await _load_owned_course(session, course_id)
    edits = dict(edits or {})
    tag_ids = edits.pop("tag_ids", None)
    patch = {key: value for key, value in edits.items() if value is not None}
    if patch:
        await courses_repo.update_course(course_id, patch)
    if tag_ids is not None:
        await courses_repo.replace_course_tags(course_id, [str(tag) for tag in tag_ids])

    course = await courses_repo.get_course(course_id)
    if not course:
        raise NotFoundError("course not found")
    chapters = await courses_repo.list_chapters_with_lessons(course_id)
    tag_count = await courses_repo.count_course_tags(course_id)
    missing = check_publish_readiness(course, chapters, tag_count)
    if missing:
        raise ValidationError(missing)

    updated = await courses_repo.set_published(course_id, True)
    logger.info("Course published", extra={"course_id": course_id})
    return updated or course


async def unpublish_course(
    session: SessionContext,
    course_id: str,
    *,
    confirm: bool = False,
) -> dict[str, Any]:
    course = await _load_owned_course(session, course_id)
    if not confirm:
        raise ValidationError("unpublish must be confirmed")
    if publish_state(course) is PublishState.draft:
        return course
    updated = await courses_repo.set_published(course_id, False)
    logger.info("Course unpublished", extra={"course_id": course_id})
    return updated or course


async def release_media(media_ids: Sequence[str]) -> None:
    """Delete every media id at the video host or raise listing the failures."""

    client = video_host.get_video_host()
    failed: list[str] = []
    for media_id in dict.fromkeys(media_ids):
        try:
            released = await client.delete_media(media_id)
        except video_host.VideoHostError as exc:
            metrics.media_release_failures_total.inc()
            logger.warning(
                "Media release failed",
                extra={"media_id": media_id, "upstream_status": exc.status_code},
            )
            failed.append(media_id)
            continue
        if not released:
            logger.info("Media already absent at host", extra={"media_id": media_id})
    if failed:
        raise MediaReleaseError(failed)


async def delete_course(session: SessionContext, course_id: str) -> None:
    """Delete a course nobody has bought, releasing its media first.

    Purchased courses stay in place (buyers keep their lessons); the owner
    can unpublish them instead.
    """

    await _load_owned_course(session, course_id)
    if await purchases_repo.count_course_purchases(course_id):
        raise ConflictError("course has purchases; unpublish it instead")
    media_ids = await courses_repo.list_course_media_ids(course_id)
    await release_media(media_ids)
    try:
        await courses_repo.delete_course(course_id)
    except pg_errors.ForeignKeyViolation as exc:
        # a purchase landed between the check and the delete
        logger.warning(
            "Course delete blocked by purchase after media release",
            extra={"course_id": course_id, "released_media": len(media_ids)},
        )
        raise ConflictError("course has purchases; unpublish it instead") from exc
    logger.info(
        "Course deleted",
        extra={"course_id": course_id, "released_media": len(media_ids)},
    )


async def delete_lesson(session: SessionContext, lesson_id: str) -> None:
    lesson = await courses_repo.get_lesson(lesson_id)
    if not lesson:
        raise NotFoundError("lesson not found")
    await _load_owned_course(session, str(lesson["course_id"]))
    if lesson.get("media_id"):
        await release_media([str(lesson["media_id"])])
    await courses_repo.delete_lesson(lesson_id)
    logger.info("Lesson deleted", extra={"lesson_id": lesson_id})


__all__ = [
    "PublishState",
    "check_publish_readiness",
    "delete_course",
    "delete_lesson",
    "publish_course",
    "publish_state",
    "readiness",
    "release_media",
    "unpublish_course",
]
