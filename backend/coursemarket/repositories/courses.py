from __future__ import annotations

from typing import Any, Mapping, Sequence
from uuid import UUID

from ..db import get_conn, pool

CourseRow = dict[str, Any]
ChapterRow = dict[str, Any]
LessonRow = dict[str, Any]

_COURSE_COLUMNS = """
        id,
        title,
        description,
        price,
        creator_id,
        is_published,
        created_at,
        updated_at
    """

_LESSON_COLUMNS = """
        id,
        course_id,
        chapter_id,
        title,
        position,
        is_preview,
        media_id
    """

_COURSE_UPDATE_COLUMNS = {
    "title",
    "description",
    "price",
}


async def get_course(course_id: str | UUID) -> CourseRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_COURSE_COLUMNS}
            FROM app.courses
            WHERE id = %s
            LIMIT 1
            """,
            (course_id,),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def list_courses_by_ids(course_ids: Sequence[str]) -> list[CourseRow]:
    if not course_ids:
        return []
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_COURSE_COLUMNS}
            FROM app.courses
            WHERE id = ANY(%s::uuid[])
            """,
            (list(course_ids),),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def list_creator_courses(creator_id: str | UUID) -> list[CourseRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_COURSE_COLUMNS}
            FROM app.courses
            WHERE creator_id = %s
            ORDER BY created_at DESC
            """,
            (creator_id,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def get_lesson(lesson_id: str | UUID) -> LessonRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_LESSON_COLUMNS}
            FROM app.lessons
            WHERE id = %s
            LIMIT 1
            """,
            (lesson_id,),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def list_chapters_with_lessons(course_id: str | UUID) -> list[ChapterRow]:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT id, course_id, title, position
            FROM app.chapters
            WHERE course_id = %s
            ORDER BY position, id
            """,
            (course_id,),
        )
        chapters = [dict(row) for row in await cur.fetchall()]
        await cur.execute(
            f"""
            SELECT {_LESSON_COLUMNS}
            FROM app.lessons
            WHERE course_id = %s
            ORDER BY position, id
            """,
            (course_id,),
        )
        lessons = [dict(row) for row in await cur.fetchall()]

    by_chapter: dict[str, list[LessonRow]] = {}
    for lesson in lessons:
        by_chapter.setdefault(str(lesson["chapter_id"]), []).append(lesson)
    for chapter in chapters:
        chapter["lessons"] = by_chapter.get(str(chapter["id"]), [])
    return chapters


async def count_course_lessons(course_id: str | UUID) -> int:
    async with get_conn() as cur:
        await cur.execute(
            "SELECT count(*) AS total FROM app.lessons WHERE course_id = %s",
            (course_id,),
        )
        row = await cur.fetchone()
    return int(row["total"]) if row else 0


async def list_course_media_ids(course_id: str | UUID) -> list[str]:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT media_id
            FROM app.lessons
            WHERE course_id = %s AND media_id IS NOT NULL
            ORDER BY position, id
            """,
            (course_id,),
        )
        rows = await cur.fetchall()
    return [str(row["media_id"]) for row in rows]


async def count_course_tags(course_id: str | UUID) -> int:
    async with get_conn() as cur:
        await cur.execute(
            "SELECT count(*) AS total FROM app.course_tags WHERE course_id = %s",
            (course_id,),
        )
        row = await cur.fetchone()
    return int(row["total"]) if row else 0


async def update_course(course_id: str | UUID, patch: Mapping[str, Any]) -> CourseRow | None:
    fields = {key: value for key, value in patch.items() if key in _COURSE_UPDATE_COLUMNS}
    if not fields:
        return await get_course(course_id)
    assignments = ", ".join(f"{column} = %s" for column in fields)
    async with get_conn() as cur:
        await cur.execute(
            f"""
            UPDATE app.courses
               SET {assignments},
                   updated_at = now()
             WHERE id = %s
            RETURNING {_COURSE_COLUMNS}
            """,
            (*fields.values(), course_id),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def replace_course_tags(course_id: str | UUID, tag_ids: Sequence[str]) -> int:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor() as cur:  # type: ignore[attr-defined]
            await cur.execute(
                "DELETE FROM app.course_tags WHERE course_id = %s",
                (course_id,),
            )
            for tag_id in dict.fromkeys(tag_ids):
                await cur.execute(
                    """
                    INSERT INTO app.course_tags (course_id, tag_id)
                    VALUES (%s, %s)
                    ON CONFLICT DO NOTHING
                    """,
                    (course_id, tag_id),
                )
            await conn.commit()
    return len(dict.fromkeys(tag_ids))


async def set_published(course_id: str | UUID, is_published: bool) -> CourseRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            UPDATE app.courses
               SET is_published = %s,
                   updated_at = now()
             WHERE id = %s
            RETURNING {_COURSE_COLUMNS}
            """,
            (is_published, course_id),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def delete_course(course_id: str | UUID) -> bool:
    async with get_conn() as cur:
        await cur.execute("DELETE FROM app.courses WHERE id = %s", (course_id,))
        return cur.rowcount > 0


async def delete_lesson(lesson_id: str | UUID) -> bool:
    async with get_conn() as cur:
        await cur.execute("DELETE FROM app.lessons WHERE id = %s", (lesson_id,))
        return cur.rowcount > 0


__all__ = [
    "count_course_lessons",
    "count_course_tags",
    "delete_course",
    "delete_lesson",
    "get_course",
    "get_lesson",
    "list_chapters_with_lessons",
    "list_course_media_ids",
    "list_courses_by_ids",
    "list_creator_courses",
    "replace_course_tags",
    "set_published",
    "update_course",
]
