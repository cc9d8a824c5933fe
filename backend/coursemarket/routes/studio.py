from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, status

from .. import schemas
from ..auth import CreatorSession
from ..services import publishing

router = APIRouter(prefix="/studio", tags=["studio"])


@router.get("/courses/{course_id}/readiness", response_model=schemas.ReadinessResponse)
async def course_readiness(
    course_id: UUID,
    session: CreatorSession,
) -> schemas.ReadinessResponse:
    return schemas.ReadinessResponse(**await publishing.readiness(session, str(course_id)))


@router.post("/courses/{course_id}/publish", response_model=schemas.CourseRecord)
async def publish_course(
    course_id: UUID,
    session: CreatorSession,
    payload: schemas.PublishRequest | None = None,
) -> Any:
    edits = payload.edits() if payload else {}
    return await publishing.publish_course(session, str(course_id), edits)


@router.post("/courses/{course_id}/unpublish", response_model=schemas.CourseRecord)
async def unpublish_course(
    course_id: UUID,
    payload: schemas.UnpublishRequest,
    session: CreatorSession,
) -> Any:
    return await publishing.unpublish_course(session, str(course_id), confirm=payload.confirm)


@router.delete("/courses/{course_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_course(course_id: UUID, session: CreatorSession) -> None:
    await publishing.delete_course(session, str(course_id))


@router.delete("/lessons/{lesson_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lesson(lesson_id: UUID, session: CreatorSession) -> None:
    await publishing.delete_lesson(session, str(lesson_id))
