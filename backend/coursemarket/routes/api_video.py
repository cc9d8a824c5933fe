from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from .. import schemas
from ..auth import OptionalSession
from ..services import entitlements, playback_tokens

router = APIRouter(prefix="/api/video", tags=["video"])


@router.post("/token", response_model=schemas.PlaybackTokenResponse)
async def issue_playback_token(
    payload: schemas.PlaybackTokenRequest,
    session: OptionalSession,
) -> schemas.PlaybackTokenResponse:
    token = await playback_tokens.issue_lesson_token(
        session,
        str(payload.lesson_id),
        payload.media_id,
    )
    return schemas.PlaybackTokenResponse(**token.as_dict())


@router.get("/access/{lesson_id}", response_model=schemas.AccessDecisionResponse)
async def lesson_access(
    lesson_id: UUID,
    session: OptionalSession,
) -> schemas.AccessDecisionResponse:
    decision = await entitlements.resolve_lesson_access_by_id(session, str(lesson_id))
    return schemas.AccessDecisionResponse(
        state=decision.state.value,
        course_id=decision.course_id,
        lesson_id=decision.lesson_id,
        reason=decision.reason,
        is_preview=decision.is_preview,
        media_available=decision.media_available,
    )
