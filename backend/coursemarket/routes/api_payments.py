from __future__ import annotations

import logging

import sentry_sdk
import stripe
from fastapi import APIRouter, HTTPException, Request, status

from .. import schemas
from ..auth import AdminSession, CurrentSession
from ..config import settings
from ..errors import CommerceError, ConflictError
from ..services import checkout_service, ebooks_service, purchases_service

router = APIRouter(prefix="/api/payment", tags=["payments"])
logger = logging.getLogger(__name__)


@router.post(
    "/checkout",
    response_model=schemas.CheckoutCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_checkout(
    payload: schemas.CourseRef,
    session: CurrentSession,
) -> schemas.CheckoutCreateResponse:
    created = await checkout_service.create_checkout(session, str(payload.course_id))
    return schemas.CheckoutCreateResponse(**created)


@router.post("/verify", response_model=schemas.PurchaseRecord)
async def verify_payment(
    payload: schemas.CheckoutVerifyRequest,
    session: CurrentSession,
) -> schemas.PurchaseRecord:
    purchase = await checkout_service.verify_paid_purchase(
        session,
        payload.order_reference,
        str(payload.course_id),
    )
    return schemas.PurchaseRecord(**purchase)


@router.post("/free-enroll", response_model=schemas.FreeEnrollResponse)
async def free_enroll(
    payload: schemas.CourseRef,
    session: CurrentSession,
) -> schemas.FreeEnrollResponse:
    try:
        purchase = await purchases_service.free_enroll(session, str(payload.course_id))
    except ConflictError:
        return schemas.FreeEnrollResponse(already_enrolled=True)
    return schemas.FreeEnrollResponse(purchase=schemas.PurchaseRecord(**purchase))


@router.post(
    "/ebook-checkout",
    response_model=schemas.CheckoutCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_ebook_checkout(
    payload: schemas.EbookRef,
    session: CurrentSession,
) -> schemas.CheckoutCreateResponse:
    created = await checkout_service.create_ebook_checkout(session, str(payload.ebook_id))
    return schemas.CheckoutCreateResponse(**created)


@router.post("/ebook-verify", response_model=schemas.EbookPurchaseRecord)
async def verify_ebook_payment(
    payload: schemas.EbookCheckoutVerifyRequest,
    session: CurrentSession,
) -> schemas.EbookPurchaseRecord:
    purchase = await checkout_service.verify_ebook_purchase(
        session,
        payload.order_reference,
        str(payload.ebook_id),
    )
    return schemas.EbookPurchaseRecord(**purchase)


@router.post("/ebook-free-enroll", response_model=schemas.EbookFreeEnrollResponse)
async def free_enroll_ebook(
    payload: schemas.EbookRef,
    session: CurrentSession,
) -> schemas.EbookFreeEnrollResponse:
    try:
        purchase = await ebooks_service.free_enroll_ebook(session, str(payload.ebook_id))
    except ConflictError:
        return schemas.EbookFreeEnrollResponse(already_enrolled=True)
    return schemas.EbookFreeEnrollResponse(purchase=schemas.EbookPurchaseRecord(**purchase))


@router.post("/refund", response_model=schemas.PurchaseRecord)
async def refund_purchase(
    payload: schemas.RefundRequest,
    session: AdminSession,
) -> schemas.PurchaseRecord:
    purchase = await purchases_service.refund_purchase(str(payload.purchase_id))
    return schemas.PurchaseRecord(**purchase)


def _report_webhook_failure(event_type: str | None, exc: CommerceError) -> None:
    if not sentry_sdk.get_client().is_active():
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("stripe_event", event_type or "unknown")
        scope.set_extra("code", exc.code)
        sentry_sdk.capture_message(
            f"Checkout webhook verification failed: {exc.detail}",
            level="warning",
        )


@router.post("/webhook", status_code=status.HTTP_200_OK)
async def stripe_webhook(request: Request):
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe webhook secret missing",
        )

    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature",
        )

    try:
        event = stripe.Webhook.construct_event(
            payload=payload.decode("utf-8"),
            sig_header=signature,
            secret=settings.stripe_webhook_secret,
        )
    except ValueError as exc:
        logger.warning("Invalid Stripe payload: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload"
        ) from exc
    except stripe.SignatureVerificationError as exc:
        logger.warning("Invalid Stripe signature: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature"
        ) from exc

    event_type = event.get("type")
    data_object = event.get("data", {}).get("object", {})

    if event_type in {"checkout.session.completed", "checkout.session.async_payment_succeeded"}:
        try:
            await checkout_service.handle_checkout_completed(data_object)
        except CommerceError as exc:
            logger.warning("Checkout webhook verification failed: %s", exc.detail)
            _report_webhook_failure(event_type, exc)
    else:
        logger.info("Unhandled Stripe event %s", event_type)

    return {"status": "ok"}
