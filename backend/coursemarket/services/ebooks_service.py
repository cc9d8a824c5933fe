"""E-book side of the commerce engine.

E-books share the purchase rules of courses (one active purchase per pair,
server-verified paid checkout, free enrollment) but are delivered as a PDF
behind a short-lived signed link instead of streamed lessons.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from psycopg import errors as pg_errors

from .. import metrics
from ..auth import SessionContext
from ..config import settings
from ..errors import (
    AuthRequiredError,
    ConflictError,
    DownloadUnavailableError,
    NotFoundError,
    ValidationError,
)
from ..repositories import ebooks as ebooks_repo
from . import ebook_storage
from .entitlements import require_ebook_entitlement, resolve_ebook_access

logger = logging.getLogger(__name__)

FREE_EBOOK_REFERENCE_PREFIX = "free-ebook"


@dataclass(frozen=True, slots=True)
class EbookCartToggleResult:
    in_cart: bool
    ebook_id: str
    item: dict[str, Any] | None = None


def _require_viewer(session: SessionContext) -> str:
    if not session.is_authenticated or session.user_id is None:
        raise AuthRequiredError()
    return session.user_id


def free_ebook_reference(ebook_id: str, user_id: str) -> str:
    return f"{FREE_EBOOK_REFERENCE_PREFIX}-{ebook_id}-{user_id}-{int(time.time() * 1000)}"


async def _load_published_ebook(ebook_id: str) -> dict[str, Any]:
    ebook = await ebooks_repo.get_ebook(ebook_id)
    if not ebook or not ebook.get("is_published"):
        raise NotFoundError("e-book not found")
    return ebook


async def toggle_ebook_cart(session: SessionContext, ebook_id: str) -> EbookCartToggleResult:
    user_id = _require_viewer(session)
    await _load_published_ebook(ebook_id)
    if await ebooks_repo.get_active_ebook_purchase(user_id, ebook_id):
        raise ConflictError("already purchased")

    if await ebooks_repo.get_ebook_cart_item(user_id, ebook_id):
        await ebooks_repo.remove_ebook_cart_item(user_id, ebook_id)
        return EbookCartToggleResult(in_cart=False, ebook_id=ebook_id)
    item = await ebooks_repo.add_ebook_cart_item(user_id, ebook_id)
    return EbookCartToggleResult(in_cart=True, ebook_id=ebook_id, item=item)


async def free_enroll_ebook(session: SessionContext, ebook_id: str) -> dict[str, Any]:
    user_id = _require_viewer(session)
    ebook = await _load_published_ebook(ebook_id)
    if int(ebook.get("price") or 0) != 0:
        raise ValidationError("e-book is not free")

    try:
        purchase = await ebooks_repo.create_ebook_purchase(
            user_id=user_id,
            ebook_id=ebook_id,
            amount=0,
            payment_reference=free_ebook_reference(ebook_id, user_id),
            status="completed",
        )
    except pg_errors.UniqueViolation as exc:
        raise ConflictError("already enrolled") from exc

    metrics.free_enrollments_total.inc()
    logger.info(
        "Free e-book enrollment recorded",
        extra={"ebook_id": ebook_id, "purchase_id": str(purchase.get("id"))},
    )
    await ebooks_repo.remove_ebook_cart_item(user_id, ebook_id)
    return purchase


async def download_ebook(session: SessionContext, ebook_id: str) -> dict[str, Any]:
    """Issue a signed link to the full PDF for an entitled viewer.

    Buyers get a download counted against their purchase; the owner and
    admins download without one.
    """

    ebook = await ebooks_repo.get_ebook(ebook_id)
    if not ebook:
        raise NotFoundError("e-book not found")
    access = await resolve_ebook_access(session, ebook)
    require_ebook_entitlement(access)
    if not ebook.get("full_pdf_path"):
        raise NotFoundError("e-book file not found")

    filename = f"{ebook.get('title') or ebook_id}.pdf"
    try:
        signed = await ebook_storage.get_ebook_storage().signed_download(
            str(ebook["full_pdf_path"]),
            ttl_seconds=settings.ebook_download_ttl_seconds,
            filename=filename,
        )
    except ebook_storage.EbookFileMissingError as exc:
        raise NotFoundError("e-book file not found") from exc
    except ebook_storage.EbookStorageError as exc:
        logger.warning(
            "E-book download signing failed",
            extra={"ebook_id": ebook_id, "upstream_status": exc.status_code},
        )
        raise DownloadUnavailableError() from exc

    download_count = None
    if access.purchase is not None:
        updated = await ebooks_repo.record_ebook_download(access.purchase["id"])
        download_count = (updated or access.purchase).get("download_count")
    metrics.ebook_downloads_total.inc()
    logger.info(
        "E-book download issued",
        extra={"ebook_id": ebook_id, "reason": access.reason, "download_count": download_count},
    )
    return {**signed.as_dict(), "download_count": download_count}


__all__ = [
    "EbookCartToggleResult",
    "download_ebook",
    "free_ebook_reference",
    "free_enroll_ebook",
    "toggle_ebook_cart",
]
