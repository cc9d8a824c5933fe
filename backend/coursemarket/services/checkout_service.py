"""Paid checkout through Stripe Checkout.

A purchase row is written only after the engine itself retrieves the
Checkout Session from Stripe and checks status, metadata and amount. Client
reports and webhook payloads are triggers for that check, never evidence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import stripe
from fastapi import HTTPException, status
from psycopg import errors as pg_errors
from starlette.concurrency import run_in_threadpool

from .. import metrics
from ..auth import SessionContext
from ..config import settings
from ..errors import (
    AuthRequiredError,
    CommerceError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PaymentCancelledError,
    PaymentFailedError,
    ValidationError,
    VerificationFailedError,
)
from ..repositories import courses as courses_repo
from ..repositories import ebooks as ebooks_repo
from ..repositories import purchases as purchases_repo

logger = logging.getLogger(__name__)

RETURN_PATH = "checkout/return?session_id={CHECKOUT_SESSION_ID}"
CANCEL_PATH = "checkout/cancel"


class CheckoutState(str, Enum):
    idle = "idle"
    initiated = "initiated"
    gateway_cancelled = "gateway_cancelled"
    gateway_failed = "gateway_failed"
    gateway_succeeded = "gateway_succeeded"
    verifying = "verifying"
    verified = "verified"
    verification_failed = "verification_failed"


_TRANSITIONS: dict[CheckoutState, frozenset[CheckoutState]] = {
    CheckoutState.idle: frozenset({CheckoutState.initiated}),
    CheckoutState.initiated: frozenset(
        {
            CheckoutState.gateway_cancelled,
            CheckoutState.gateway_failed,
            CheckoutState.gateway_succeeded,
        }
    ),
    CheckoutState.gateway_succeeded: frozenset({CheckoutState.verifying}),
    CheckoutState.verifying: frozenset(
        {CheckoutState.verified, CheckoutState.verification_failed}
    ),
    CheckoutState.gateway_cancelled: frozenset(),
    CheckoutState.gateway_failed: frozenset(),
    CheckoutState.verified: frozenset(),
    CheckoutState.verification_failed: frozenset(),
}

USER_MESSAGES: dict[CheckoutState, str] = {
    CheckoutState.gateway_cancelled: "Payment was cancelled. You have not been charged.",
    CheckoutState.gateway_failed: "Payment failed. Please try again or use another card.",
    CheckoutState.verification_failed: (
        "Your payment went through but could not be confirmed yet. "
        "Please retry verification or contact support."
    ),
    CheckoutState.verified: "Purchase complete. Enjoy the course!",
}


@dataclass
class CheckoutAttempt:
    """One viewer's walk through a paid checkout.

    Only ``verified`` grants access. Every terminal state maps to its own
    user-facing message so a cancelled payment is never reported as a
    failed one. When server verification finds the gateway cancelled or
    failed the payment, the message follows that outcome and verification
    is not offered again.
    """

    course_id: str
    state: CheckoutState = CheckoutState.idle
    order_reference: str | None = None
    error: CommerceError | None = None
    history: list[CheckoutState] = field(default_factory=list)

    def transition(self, target: CheckoutState) -> None:
        allowed = _TRANSITIONS[self.state]
        if target not in allowed:
            raise InvalidTransitionError(
                f"cannot move checkout from {self.state.value} to {target.value}"
            )
        self.history.append(self.state)
        self.state = target

    def initiate(self, order_reference: str) -> None:
        self.transition(CheckoutState.initiated)
        self.order_reference = order_reference

    def gateway_result(self, outcome: str) -> None:
        mapping = {
            "cancelled": CheckoutState.gateway_cancelled,
            "failed": CheckoutState.gateway_failed,
            "succeeded": CheckoutState.gateway_succeeded,
        }
        try:
            target = mapping[outcome]
        except KeyError as exc:
            raise InvalidTransitionError(f"unknown gateway outcome {outcome!r}") from exc
        self.transition(target)

    def begin_verification(self) -> None:
        self.transition(CheckoutState.verifying)

    def verification_result(self, error: CommerceError | None = None) -> None:
        if error is None:
            self.transition(CheckoutState.verified)
            return
        self.transition(CheckoutState.verification_failed)
        self.error = error

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.state]

    @property
    def entitled(self) -> bool:
        return self.state is CheckoutState.verified

    @property
    def gateway_declined(self) -> bool:
        """Verification found the gateway cancelled or failed the payment."""

        return self.state is CheckoutState.verification_failed and isinstance(
            self.error, (PaymentCancelledError, PaymentFailedError)
        )

    @property
    def can_retry_verification(self) -> bool:
        return self.state is CheckoutState.verification_failed and not self.gateway_declined

    @property
    def user_message(self) -> str | None:
        if self.state is CheckoutState.verification_failed:
            if isinstance(self.error, PaymentCancelledError):
                return USER_MESSAGES[CheckoutState.gateway_cancelled]
            if isinstance(self.error, PaymentFailedError):
                return USER_MESSAGES[CheckoutState.gateway_failed]
        return USER_MESSAGES.get(self.state)


def _default_checkout_urls() -> tuple[str, str]:
    base = (settings.frontend_base_url or "").rstrip("/")
    success_url = settings.checkout_success_url or f"{base}/{RETURN_PATH}"
    cancel_url = settings.checkout_cancel_url or f"{base}/{CANCEL_PATH}"
    return success_url, cancel_url


def _require_stripe() -> None:
    secret = (settings.stripe_secret_key or "").strip()
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe secret key is missing (set STRIPE_SECRET_KEY)",
        )
    stripe.api_key = secret


def _require_viewer(session: SessionContext) -> str:
    if not session.is_authenticated or session.user_id is None:
        raise AuthRequiredError()
    return session.user_id


async def _create_stripe_session(
    session: SessionContext,
    *,
    title: str,
    price: int,
    metadata: dict[str, str],
) -> dict[str, Any]:
    _require_stripe()
    success_url, cancel_url = _default_checkout_urls()
    checkout_kwargs: dict[str, Any] = {
        "mode": "payment",
        "line_items": [
            {
                "price_data": {
                    "currency": settings.checkout_currency,
                    "product_data": {"name": title},
                    "unit_amount": price,
                },
                "quantity": 1,
            }
        ],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "client_reference_id": session.user_id,
        "metadata": metadata,
    }
    if session.email:
        checkout_kwargs["customer_email"] = session.email

    try:
        checkout = await run_in_threadpool(
            lambda: stripe.checkout.Session.create(**checkout_kwargs)
        )
    except stripe.StripeError as exc:
        logger.warning("Stripe checkout creation failed", extra=dict(metadata))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create Stripe checkout session",
        ) from exc

    url = checkout.get("url")
    if not isinstance(url, str) or not url:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Stripe session missing checkout url",
        )
    return {"order_reference": checkout.get("id"), "url": url, "amount": price}


async def create_checkout(session: SessionContext, course_id: str) -> dict[str, Any]:
    user_id = _require_viewer(session)
    course = await courses_repo.get_course(course_id)
    if not course or not course.get("is_published"):
        raise NotFoundError("course not found")
    price = int(course.get("price") or 0)
    if price <= 0:
        raise ValidationError("course is free; use free enrollment")
    if await purchases_repo.get_active_purchase(user_id, course_id):
        raise ConflictError("already purchased")
    return await _create_stripe_session(
        session,
        title=course.get("title") or course_id,
        price=price,
        metadata={"course_id": str(course_id), "user_id": user_id},
    )


async def create_ebook_checkout(session: SessionContext, ebook_id: str) -> dict[str, Any]:
    user_id = _require_viewer(session)
    ebook = await ebooks_repo.get_ebook(ebook_id)
    if not ebook or not ebook.get("is_published"):
        raise NotFoundError("e-book not found")
    price = int(ebook.get("price") or 0)
    if price <= 0:
        raise ValidationError("e-book is free; use free enrollment")
    if await ebooks_repo.get_active_ebook_purchase(user_id, ebook_id):
        raise ConflictError("already purchased")
    return await _create_stripe_session(
        session,
        title=ebook.get("title") or ebook_id,
        price=price,
        metadata={"ebook_id": str(ebook_id), "user_id": user_id},
    )


async def _retrieve_checkout(order_reference: str) -> Mapping[str, Any]:
    _require_stripe()
    try:
        return await run_in_threadpool(
            lambda: stripe.checkout.Session.retrieve(order_reference)
        )
    except stripe.InvalidRequestError as exc:
        raise VerificationFailedError("unknown order reference") from exc
    except stripe.StripeError as exc:
        raise VerificationFailedError("payment gateway unreachable") from exc


_PRODUCT_NAMES = {"course_id": "course", "ebook_id": "e-book"}


def _check_gateway_record(
    checkout: Mapping[str, Any],
    *,
    user_id: str,
    product_key: str,
    product_id: str,
    price: int,
) -> None:
    checkout_status = checkout.get("status")
    payment_status = checkout.get("payment_status")
    if checkout_status == "expired":
        raise PaymentCancelledError()
    if checkout_status != "complete" or payment_status != "paid":
        if payment_status == "unpaid" and checkout_status == "open":
            raise PaymentFailedError("payment has not been completed")
        raise PaymentFailedError()

    metadata = checkout.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        metadata = {}
    if str(metadata.get(product_key)) != str(product_id):
        raise VerificationFailedError(
            f"order does not belong to this {_PRODUCT_NAMES[product_key]}"
        )
    if str(metadata.get("user_id")) != str(user_id):
        raise VerificationFailedError("order does not belong to this viewer")
    if int(checkout.get("amount_total") or -1) != price:
        raise VerificationFailedError(
            f"paid amount does not match the {_PRODUCT_NAMES[product_key]} price"
        )


async def _verified_gateway_record(
    order_reference: str,
    *,
    user_id: str,
    product_key: str,
    product_id: str,
    price: int,
) -> None:
    try:
        checkout = await _retrieve_checkout(order_reference)
        _check_gateway_record(
            checkout,
            user_id=user_id,
            product_key=product_key,
            product_id=product_id,
            price=price,
        )
    except (PaymentCancelledError, PaymentFailedError, VerificationFailedError) as exc:
        metrics.purchase_verification_rejected_total.labels(outcome=exc.code).inc()
        logger.info(
            "Checkout verification rejected",
            extra={
                "order_reference": order_reference,
                product_key: product_id,
                "outcome": exc.code,
            },
        )
        raise


async def _existing_for_reference(
    order_reference: str, user_id: str, course_id: str
) -> dict[str, Any] | None:
    existing = await purchases_repo.get_purchase_by_reference(order_reference)
    if not existing:
        return None
    if str(existing["user_id"]) != user_id or str(existing["course_id"]) != str(course_id):
        raise ConflictError("order reference already used")
    return existing


async def verify_paid_purchase(
    session: SessionContext,
    order_reference: str,
    course_id: str,
) -> dict[str, Any]:
    """Verify a paid checkout with Stripe and persist the purchase.

    Safe to call repeatedly for the same order: the first call persists, later
    calls return the stored purchase. No purchase exists after a failure.
    """

    user_id = _require_viewer(session)
    if not order_reference:
        raise ValidationError("order reference is required")
    course = await courses_repo.get_course(course_id)
    if not course:
        raise NotFoundError("course not found")

    existing = await _existing_for_reference(order_reference, user_id, course_id)
    if existing:
        return existing

    price = int(course.get("price") or 0)
    await _verified_gateway_record(
        order_reference,
        user_id=user_id,
        product_key="course_id",
        product_id=course_id,
        price=price,
    )

    try:
        purchase = await purchases_repo.create_purchase(
            user_id=user_id,
            course_id=course_id,
            amount=price,
            payment_reference=order_reference,
            status="completed",
        )
    except pg_errors.UniqueViolation as exc:
        existing = await _existing_for_reference(order_reference, user_id, course_id)
        if existing:
            return existing
        raise ConflictError("already purchased") from exc

    metrics.purchases_verified_total.inc()
    logger.info(
        "Paid purchase verified",
        extra={
            "order_reference": order_reference,
            "course_id": course_id,
            "purchase_id": str(purchase.get("id")),
        },
    )
    return purchase


async def _existing_ebook_for_reference(
    order_reference: str, user_id: str, ebook_id: str
) -> dict[str, Any] | None:
    existing = await ebooks_repo.get_ebook_purchase_by_reference(order_reference)
    if not existing:
        return None
    if str(existing["user_id"]) != user_id or str(existing["ebook_id"]) != str(ebook_id):
        raise ConflictError("order reference already used")
    return existing


async def verify_ebook_purchase(
    session: SessionContext,
    order_reference: str,
    ebook_id: str,
) -> dict[str, Any]:
    """Same verification as ``verify_paid_purchase`` for an e-book order."""

    user_id = _require_viewer(session)
    if not order_reference:
        raise ValidationError("order reference is required")
    ebook = await ebooks_repo.get_ebook(ebook_id)
    if not ebook:
        raise NotFoundError("e-book not found")

    existing = await _existing_ebook_for_reference(order_reference, user_id, ebook_id)
    if existing:
        return existing

    price = int(ebook.get("price") or 0)
    await _verified_gateway_record(
        order_reference,
        user_id=user_id,
        product_key="ebook_id",
        product_id=ebook_id,
        price=price,
    )

    try:
        purchase = await ebooks_repo.create_ebook_purchase(
            user_id=user_id,
            ebook_id=ebook_id,
            amount=price,
            payment_reference=order_reference,
            status="completed",
        )
    except pg_errors.UniqueViolation as exc:
        existing = await _existing_ebook_for_reference(order_reference, user_id, ebook_id)
        if existing:
            return existing
        raise ConflictError("already purchased") from exc

    await ebooks_repo.remove_ebook_cart_item(user_id, ebook_id)
    metrics.purchases_verified_total.inc()
    logger.info(
        "Paid e-book purchase verified",
        extra={
            "order_reference": order_reference,
            "ebook_id": ebook_id,
            "purchase_id": str(purchase.get("id")),
        },
    )
    return purchase


async def handle_checkout_completed(data_object: Mapping[str, Any]) -> dict[str, Any] | None:
    """Webhook trigger: re-run server verification for the referenced session."""

    order_reference = data_object.get("id")
    metadata = data_object.get("metadata") or {}
    if not isinstance(metadata, Mapping):
        metadata = {}
    user_id = metadata.get("user_id")
    course_id = metadata.get("course_id")
    ebook_id = metadata.get("ebook_id")
    if not order_reference or not user_id or not (course_id or ebook_id):
        logger.info("Checkout webhook missing references; ignoring")
        return None

    viewer = SessionContext(user_id=str(user_id))
    try:
        if ebook_id:
            return await verify_ebook_purchase(viewer, str(order_reference), str(ebook_id))
        return await verify_paid_purchase(viewer, str(order_reference), str(course_id))
    except ConflictError:
        logger.info(
            "Checkout webhook for already owned item",
            extra={
                "order_reference": order_reference,
                "course_id": course_id,
                "ebook_id": ebook_id,
            },
        )
        return None


__all__ = [
    "CheckoutAttempt",
    "CheckoutState",
    "USER_MESSAGES",
    "create_checkout",
    "create_ebook_checkout",
    "handle_checkout_completed",
    "verify_ebook_purchase",
    "verify_paid_purchase",
]
