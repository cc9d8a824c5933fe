from __future__ import annotations

from typing import Any
from uuid import UUID

from ..db import get_conn

_PROGRESS_COLUMNS = """
        id,
        user_id,
        lesson_id,
        course_id,
        completed,
        completed_at,
        last_watched_at
    """


async def upsert_completion(
    user_id: str | UUID,
    lesson_id: str | UUID,
    course_id: str | UUID,
) -> dict[str, Any]:
    """Mark a lesson complete; repeated calls only advance ``last_watched_at``."""

    async with get_conn() as cur:
        await cur.execute(
            f"""
            INSERT INTO app.lesson_progress (
                user_id,
                lesson_id,
                course_id,
                completed,
                completed_at,
                last_watched_at
            )
            VALUES (%s, %s, %s, true, now(), now())
            ON CONFLICT (user_id, lesson_id)
            DO UPDATE SET
                completed = true,
                completed_at = COALESCE(app.lesson_progress.completed_at, EXCLUDED.completed_at),
                last_watched_at = now()
            RETURNING {_PROGRESS_COLUMNS}
            """,
            (user_id, lesson_id, course_id),
        )
        row = await cur.fetchone()
        return dict(row)


async def get_progress(user_id: str | UUID, lesson_id: str | UUID) -> dict[str, Any] | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_PROGRESS_COLUMNS}
            FROM app.lesson_progress
            WHERE user_id = %s AND lesson_id = %s
            LIMIT 1
            """,
            (user_id, lesson_id),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def count_completed(user_id: str | UUID, course_id: str | UUID) -> int:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT count(*) AS completed
            FROM app.lesson_progress
            WHERE user_id = %s AND course_id = %s AND completed = true
            """,
            (user_id, course_id),
        )
        row = await cur.fetchone()
    return int(row["completed"]) if row else 0


__all__ = ["count_completed", "get_progress", "upsert_completion"]
