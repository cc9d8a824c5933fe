from __future__ import annotations

from typing import Any
from uuid import UUID

from ..db import get_conn


async def get_cart_item(user_id: str | UUID, course_id: str | UUID) -> dict[str, Any] | None:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT id, user_id, course_id, created_at
            FROM app.cart_items
            WHERE user_id = %s AND course_id = %s
            LIMIT 1
            """,
            (user_id, course_id),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def add_cart_item(user_id: str | UUID, course_id: str | UUID) -> dict[str, Any]:
    """Insert the pair; a concurrent insert for the same pair returns the existing row."""

    async with get_conn() as cur:
        await cur.execute(
            """
            WITH inserted AS (
                INSERT INTO app.cart_items (user_id, course_id)
                VALUES (%s, %s)
                ON CONFLICT (user_id, course_id) DO NOTHING
                RETURNING id, user_id, course_id, created_at
            )
            SELECT id, user_id, course_id, created_at FROM inserted
            UNION ALL
            SELECT id, user_id, course_id, created_at
            FROM app.cart_items
            WHERE user_id = %s AND course_id = %s
            LIMIT 1
            """,
            (user_id, course_id, user_id, course_id),
        )
        row = await cur.fetchone()
        return dict(row)


async def remove_cart_item(user_id: str | UUID, course_id: str | UUID) -> bool:
    async with get_conn() as cur:
        await cur.execute(
            """
            DELETE FROM app.cart_items
            WHERE user_id = %s AND course_id = %s
            """,
            (user_id, course_id),
        )
        return cur.rowcount > 0


async def list_cart_items(user_id: str | UUID) -> list[dict[str, Any]]:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT ci.id,
                   ci.user_id,
                   ci.course_id,
                   ci.created_at,
                   c.title AS course_title,
                   c.price AS course_price
            FROM app.cart_items ci
            JOIN app.courses c ON c.id = ci.course_id
            WHERE ci.user_id = %s
            ORDER BY ci.created_at DESC
            """,
            (user_id,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


__all__ = ["add_cart_item", "get_cart_item", "list_cart_items", "remove_cart_item"]
