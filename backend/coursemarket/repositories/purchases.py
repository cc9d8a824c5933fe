from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from ..db import get_conn

PurchaseRow = dict[str, Any]

_PURCHASE_COLUMNS = """
        id,
        user_id,
        course_id,
        amount,
        status,
        payment_reference,
        created_at,
        updated_at
    """


async def get_active_purchase(
    user_id: str | UUID, course_id: str | UUID
) -> PurchaseRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_PURCHASE_COLUMNS}
            FROM app.purchases
            WHERE user_id = %s
              AND course_id = %s
              AND status <> 'refunded'
            LIMIT 1
            """,
            (user_id, course_id),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def get_purchase_by_reference(payment_reference: str) -> PurchaseRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_PURCHASE_COLUMNS}
            FROM app.purchases
            WHERE payment_reference = %s
            LIMIT 1
            """,
            (payment_reference,),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def create_purchase(
    *,
    user_id: str | UUID,
    course_id: str | UUID,
    amount: int,
    payment_reference: str | None,
    status: str = "completed",
) -> PurchaseRow:
    """Insert a purchase.

    Raises ``psycopg.errors.UniqueViolation`` when the viewer already holds a
    non-refunded purchase for the course or the payment reference was used.
    """

    async with get_conn() as cur:
        await cur.execute(
            f"""
            INSERT INTO app.purchases (
                user_id,
                course_id,
                amount,
                status,
                payment_reference
            )
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {_PURCHASE_COLUMNS}
            """,
            (user_id, course_id, amount, status, payment_reference),
        )
        row = await cur.fetchone()
        return dict(row)


async def refund_purchase(purchase_id: str | UUID) -> PurchaseRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            UPDATE app.purchases
               SET status = 'refunded',
                   updated_at = now()
             WHERE id = %s
               AND status = 'completed'
            RETURNING {_PURCHASE_COLUMNS}
            """,
            (purchase_id,),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def count_course_purchases(course_id: str | UUID) -> int:
    """Purchase rows of any status; refunded rows still pin the course."""

    async with get_conn() as cur:
        await cur.execute(
            "SELECT count(*) AS total FROM app.purchases WHERE course_id = %s",
            (course_id,),
        )
        row = await cur.fetchone()
    return int(row["total"]) if row else 0


async def list_user_purchases(user_id: str | UUID) -> list[PurchaseRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_PURCHASE_COLUMNS}
            FROM app.purchases
            WHERE user_id = %s
              AND status = 'completed'
            ORDER BY created_at DESC
            """,
            (user_id,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def list_revenue_rows(
    *,
    creator_id: str | UUID | None = None,
    since: datetime | None = None,
) -> list[PurchaseRow]:
    """Completed purchases joined with the owning course's creator and title."""

    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT p.id,
                   p.user_id,
                   p.course_id,
                   p.amount,
                   p.status,
                   p.payment_reference,
                   p.created_at,
                   c.creator_id,
                   c.title AS course_title
            FROM app.purchases p
            JOIN app.courses c ON c.id = p.course_id
            WHERE p.status = 'completed'
              AND (%(creator_id)s::uuid IS NULL OR c.creator_id = %(creator_id)s::uuid)
              AND (%(since)s::timestamptz IS NULL OR p.created_at >= %(since)s::timestamptz)
            ORDER BY p.created_at DESC
            """,
            {"creator_id": creator_id, "since": since},
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


__all__ = [
    "count_course_purchases",
    "create_purchase",
    "get_active_purchase",
    "get_purchase_by_reference",
    "list_revenue_rows",
    "list_user_purchases",
    "refund_purchase",
]
