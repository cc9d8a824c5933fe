from __future__ import annotations

from typing import Any
from uuid import UUID

from ..db import get_conn

EbookRow = dict[str, Any]
EbookPurchaseRow = dict[str, Any]

_EBOOK_COLUMNS = """
        id,
        creator_id,
        title,
        description,
        price,
        full_pdf_path,
        preview_pdf_path,
        is_published,
        created_at,
        updated_at
    """

_EBOOK_PURCHASE_COLUMNS = """
        id,
        user_id,
        ebook_id,
        amount,
        status,
        payment_reference,
        download_count,
        last_downloaded_at,
        created_at,
        updated_at
    """


async def get_ebook(ebook_id: str | UUID) -> EbookRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_EBOOK_COLUMNS}
            FROM app.ebooks
            WHERE id = %s
            LIMIT 1
            """,
            (ebook_id,),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def get_active_ebook_purchase(
    user_id: str | UUID, ebook_id: str | UUID
) -> EbookPurchaseRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_EBOOK_PURCHASE_COLUMNS}
            FROM app.ebook_purchases
            WHERE user_id = %s
              AND ebook_id = %s
              AND status <> 'refunded'
            LIMIT 1
            """,
            (user_id, ebook_id),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def get_ebook_purchase_by_reference(payment_reference: str) -> EbookPurchaseRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_EBOOK_PURCHASE_COLUMNS}
            FROM app.ebook_purchases
            WHERE payment_reference = %s
            LIMIT 1
            """,
            (payment_reference,),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def create_ebook_purchase(
    *,
    user_id: str | UUID,
    ebook_id: str | UUID,
    amount: int,
    payment_reference: str | None,
    status: str = "completed",
) -> EbookPurchaseRow:
    """Insert an e-book purchase.

    Raises ``psycopg.errors.UniqueViolation`` on a second active purchase for
    the pair or a reused payment reference.
    """

    async with get_conn() as cur:
        await cur.execute(
            f"""
            INSERT INTO app.ebook_purchases (
                user_id,
                ebook_id,
                amount,
                status,
                payment_reference
            )
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {_EBOOK_PURCHASE_COLUMNS}
            """,
            (user_id, ebook_id, amount, status, payment_reference),
        )
        row = await cur.fetchone()
        return dict(row)


async def record_ebook_download(purchase_id: str | UUID) -> EbookPurchaseRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            UPDATE app.ebook_purchases
               SET download_count = download_count + 1,
                   last_downloaded_at = now(),
                   updated_at = now()
             WHERE id = %s
            RETURNING {_EBOOK_PURCHASE_COLUMNS}
            """,
            (purchase_id,),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def get_ebook_cart_item(
    user_id: str | UUID, ebook_id: str | UUID
) -> dict[str, Any] | None:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT id, user_id, ebook_id, created_at
            FROM app.ebook_cart_items
            WHERE user_id = %s AND ebook_id = %s
            LIMIT 1
            """,
            (user_id, ebook_id),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def add_ebook_cart_item(user_id: str | UUID, ebook_id: str | UUID) -> dict[str, Any]:
    async with get_conn() as cur:
        await cur.execute(
            """
            WITH inserted AS (
                INSERT INTO app.ebook_cart_items (user_id, ebook_id)
                VALUES (%s, %s)
                ON CONFLICT (user_id, ebook_id) DO NOTHING
                RETURNING id, user_id, ebook_id, created_at
            )
            SELECT id, user_id, ebook_id, created_at FROM inserted
            UNION ALL
            SELECT id, user_id, ebook_id, created_at
            FROM app.ebook_cart_items
            WHERE user_id = %s AND ebook_id = %s
            LIMIT 1
            """,
            (user_id, ebook_id, user_id, ebook_id),
        )
        row = await cur.fetchone()
        return dict(row)


async def remove_ebook_cart_item(user_id: str | UUID, ebook_id: str | UUID) -> bool:
    async with get_conn() as cur:
        await cur.execute(
            "DELETE FROM app.ebook_cart_items WHERE user_id = %s AND ebook_id = %s",
            (user_id, ebook_id),
        )
        return cur.rowcount > 0


__all__ = [
    "add_ebook_cart_item",
    "create_ebook_purchase",
    "get_active_ebook_purchase",
    "get_ebook",
    "get_ebook_cart_item",
    "get_ebook_purchase_by_reference",
    "record_ebook_download",
    "remove_ebook_cart_item",
]
