from __future__ import annotations

from typing import Any
from uuid import UUID

from ..db import get_conn


async def get_account(user_id: str | UUID) -> dict[str, Any] | None:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT id,
                   email,
                   display_name,
                   role,
                   created_at
            FROM app.accounts
            WHERE id = %s
            LIMIT 1
            """,
            (user_id,),
        )
        row = await cur.fetchone()
        return dict(row) if row else None


async def get_display_names(user_ids: list[str]) -> dict[str, str | None]:
    if not user_ids:
        return {}
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT id, display_name
            FROM app.accounts
            WHERE id = ANY(%s::uuid[])
            """,
            (user_ids,),
        )
        rows = await cur.fetchall()
    return {str(row["id"]): row.get("display_name") for row in rows}


__all__ = ["get_account", "get_display_names"]
