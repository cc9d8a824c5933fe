from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from .. import schemas
from ..auth import CurrentSession, OptionalSession
from ..services import ebooks_service

router = APIRouter(prefix="/api/ebook", tags=["ebooks"])


@router.get("/download/{ebook_id}", response_model=schemas.EbookDownloadResponse)
async def download_ebook(
    ebook_id: UUID,
    session: OptionalSession,
) -> schemas.EbookDownloadResponse:
    download = await ebooks_service.download_ebook(session, str(ebook_id))
    return schemas.EbookDownloadResponse(**download)


@router.post("/cart/toggle", response_model=schemas.EbookCartToggleResponse)
async def toggle_ebook_cart(
    payload: schemas.EbookRef,
    session: CurrentSession,
) -> schemas.EbookCartToggleResponse:
    result = await ebooks_service.toggle_ebook_cart(session, str(payload.ebook_id))
    return schemas.EbookCartToggleResponse(
        ebook_id=result.ebook_id,
        in_cart=result.in_cart,
        item=result.item,
    )
