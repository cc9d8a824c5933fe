from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from .. import metrics
from ..auth import SessionContext
from ..config import settings
from ..errors import MediaUnavailableError, NotFoundError, TokenFetchError
from . import entitlements, video_host

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PlaybackToken:
    """Capability handed to the player for a single viewing session. Never stored."""

    credential: str
    media_id: str
    host_domain: str
    expires_in_seconds: int
    expires_at: datetime

    def as_dict(self) -> dict[str, Any]:
        return {
            "credential": self.credential,
            "media_id": self.media_id,
            "host_domain": self.host_domain,
            "expires_in_seconds": self.expires_in_seconds,
            "expires_at": self.expires_at,
        }


async def request_token(
    media_id: str,
    viewer: SessionContext | None,
    *,
    is_preview: bool,
) -> PlaybackToken:
    """Obtain a fresh playback credential from the video host.

    Preview requests never carry viewer identity. Failures raise
    ``TokenFetchError``; retrying is left to an explicit caller action.
    """

    media_id = video_host.extract_media_id(media_id)
    if not media_id:
        raise TokenFetchError("media id is missing")

    claims: dict[str, Any] = {}
    if not is_preview and viewer is not None and viewer.is_authenticated:
        claims["viewer"] = viewer.user_id

    ttl = settings.playback_token_ttl_seconds
    client = video_host.get_video_host()
    try:
        if settings.playback_token_mode == "api":
            signed = await client.request_token(media_id, ttl_seconds=ttl)
        else:
            signed = client.sign_token(media_id, ttl_seconds=ttl, claims=claims or None)
    except video_host.VideoHostError as exc:
        metrics.playback_token_failures_total.inc()
        logger.warning(
            "Playback token request failed",
            extra={"media_id": media_id, "upstream_status": exc.status_code},
        )
        raise TokenFetchError(str(exc), upstream_status=exc.status_code) from exc

    metrics.playback_tokens_issued_total.labels(
        kind="preview" if is_preview else "entitled"
    ).inc()
    return PlaybackToken(
        credential=signed.credential,
        media_id=signed.media_id,
        host_domain=signed.host_domain,
        expires_in_seconds=signed.expires_in,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=signed.expires_in),
    )


async def issue_lesson_token(
    session: SessionContext,
    lesson_id: str,
    media_id: str | None = None,
) -> PlaybackToken:
    lesson, course = await entitlements.load_lesson_and_course(session, lesson_id)
    if not lesson.get("media_id"):
        raise MediaUnavailableError()
    if media_id and video_host.extract_media_id(media_id) != video_host.extract_media_id(
        str(lesson["media_id"])
    ):
        raise NotFoundError("media does not belong to this lesson")
    decision = await entitlements.resolve_lesson_access(session, lesson, course)
    entitlements.require_entitlement(decision)
    viewer = None if decision.is_preview else session
    return await request_token(
        str(lesson["media_id"]),
        viewer,
        is_preview=decision.is_preview,
    )


__all__ = ["PlaybackToken", "issue_lesson_token", "request_token"]
