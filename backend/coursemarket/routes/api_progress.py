from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from .. import schemas
from ..auth import CurrentSession
from ..services import progress_service

router = APIRouter(prefix="/api/progress", tags=["progress"])


@router.post("/lessons/{lesson_id}/complete", response_model=schemas.ProgressRecord)
async def mark_lesson_complete(
    lesson_id: UUID,
    session: CurrentSession,
) -> schemas.ProgressRecord:
    record = await progress_service.mark_complete(session, str(lesson_id))
    return schemas.ProgressRecord(
        lesson_id=record["lesson_id"],
        completed=bool(record["completed"]),
        completed_at=record.get("completed_at"),
        last_watched_at=record.get("last_watched_at"),
    )


@router.get("/lessons/{lesson_id}", response_model=schemas.ProgressRecord)
async def get_lesson_progress(
    lesson_id: UUID,
    session: CurrentSession,
) -> schemas.ProgressRecord:
    return schemas.ProgressRecord(
        **await progress_service.lesson_progress(session, str(lesson_id))
    )


@router.get("/courses/{course_id}", response_model=schemas.CourseProgressResponse)
async def get_course_progress(
    course_id: UUID,
    session: CurrentSession,
) -> schemas.CourseProgressResponse:
    progress = await progress_service.course_progress(session, str(course_id))
    return schemas.CourseProgressResponse(**progress.as_dict())


@router.get("/my-courses", response_model=list[schemas.MyCourseItem])
async def my_courses(session: CurrentSession) -> list[schemas.MyCourseItem]:
    items = await progress_service.my_courses(session)
    return [schemas.MyCourseItem(**item) for item in items]
