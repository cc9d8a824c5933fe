"""Async HTTP client for viewer-side flows against the commerce API.

``PlaybackSession`` fetches a playback credential for one lesson and keeps
the last failure so a player can show it and offer a retry button. Retrying
is always an explicit call. ``CheckoutFlow`` drives a ``CheckoutAttempt``
through create, gateway result and server verification.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .errors import (
    AuthRequiredError,
    CommerceError,
    ConflictError,
    DownloadUnavailableError,
    EntitlementError,
    InvalidTransitionError,
    MediaUnavailableError,
    NotFoundError,
    PaymentCancelledError,
    PaymentFailedError,
    TokenFetchError,
    ValidationError,
    VerificationFailedError,
)
from .services.checkout_service import CheckoutAttempt, CheckoutState

logger = logging.getLogger(__name__)

_ERRORS_BY_CODE: dict[str, type[CommerceError]] = {
    "auth_required": AuthRequiredError,
    "not_found": NotFoundError,
    "media_unavailable": MediaUnavailableError,
    "payment_cancelled": PaymentCancelledError,
    "payment_failed": PaymentFailedError,
    "verification_failed": VerificationFailedError,
    "conflict": ConflictError,
    "download_unavailable": DownloadUnavailableError,
}


def error_from_response(response: httpx.Response) -> CommerceError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = body.get("code")
    detail = str(body.get("detail") or response.reason_phrase or "request failed")

    if code == "token_fetch_failed":
        return TokenFetchError(
            str(body.get("cause") or detail), upstream_status=response.status_code
        )
    if code == "validation_failed":
        return ValidationError(body.get("missing") or detail)
    if code == "not_entitled":
        return EntitlementError(
            detail, course_id=body.get("course_id"), ebook_id=body.get("ebook_id")
        )
    error_cls = _ERRORS_BY_CODE.get(code or "")
    if error_cls is not None:
        return error_cls(detail)
    if response.status_code == 401:
        return AuthRequiredError(detail)
    return CommerceError(detail, status_code=response.status_code)


class CommerceClient:
    def __init__(
        self,
        base_url: str,
        *,
        access_token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "CommerceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            if path.startswith("/api/video"):
                raise TokenFetchError(f"network error: {exc}") from exc
            if path == "/api/payment/verify":
                raise VerificationFailedError("commerce API unreachable") from exc
            raise CommerceError("commerce API unreachable", status_code=503) from exc
        if response.status_code >= 400:
            raise error_from_response(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def playback_token(self, lesson_id: str, media_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"lesson_id": lesson_id}
        if media_id:
            body["media_id"] = media_id
        return await self._request("POST", "/api/video/token", json=body)

    async def toggle_cart(self, course_id: str) -> dict[str, Any]:
        return await self._request("POST", "/api/cart/toggle", json={"course_id": course_id})

    async def free_enroll(self, course_id: str) -> dict[str, Any]:
        return await self._request(
            "POST", "/api/payment/free-enroll", json={"course_id": course_id}
        )

    async def create_checkout(self, course_id: str) -> dict[str, Any]:
        return await self._request("POST", "/api/payment/checkout", json={"course_id": course_id})

    async def verify_checkout(self, order_reference: str, course_id: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/api/payment/verify",
            json={"order_reference": order_reference, "course_id": course_id},
        )

    async def ebook_download(self, ebook_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/ebook/download/{ebook_id}")

    async def mark_complete(self, lesson_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/api/progress/lessons/{lesson_id}/complete")


@dataclass
class PlaybackSession:
    client: CommerceClient
    lesson_id: str
    media_id: str | None = None
    token: dict[str, Any] | None = None
    error: CommerceError | None = None
    attempts: int = 0

    @property
    def retryable(self) -> bool:
        return isinstance(self.error, TokenFetchError)

    async def load(self) -> dict[str, Any] | None:
        self.attempts += 1
        try:
            self.token = await self.client.playback_token(self.lesson_id, self.media_id)
        except CommerceError as exc:
            self.token = None
            self.error = exc
            logger.info(
                "Playback token unavailable",
                extra={"lesson_id": self.lesson_id, "code": exc.code},
            )
            return None
        self.error = None
        return self.token

    async def retry(self) -> dict[str, Any] | None:
        if not self.retryable:
            return self.token
        return await self.load()


@dataclass
class CheckoutFlow:
    client: CommerceClient
    course_id: str
    attempt: CheckoutAttempt = field(init=False)
    checkout_url: str | None = None
    purchase: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        self.attempt = CheckoutAttempt(course_id=self.course_id)

    async def start(self) -> str:
        created = await self.client.create_checkout(self.course_id)
        self.attempt.initiate(created["order_reference"])
        self.checkout_url = created["url"]
        return self.checkout_url

    async def complete(self, gateway_outcome: str) -> CheckoutState:
        """Feed the gateway redirect result in and verify on success."""

        self.attempt.gateway_result(gateway_outcome)
        if self.attempt.state is not CheckoutState.gateway_succeeded:
            return self.attempt.state
        return await self.verify()

    async def verify(self) -> CheckoutState:
        if self.attempt.state is CheckoutState.verification_failed:
            if not self.attempt.can_retry_verification:
                raise InvalidTransitionError(
                    "payment was not completed at the gateway; start a new checkout"
                )
            # a retried verification restarts from the confirmed gateway result
            self.attempt = CheckoutAttempt(
                course_id=self.course_id,
                state=CheckoutState.gateway_succeeded,
                order_reference=self.attempt.order_reference,
            )
        self.attempt.begin_verification()
        try:
            self.purchase = await self.client.verify_checkout(
                self.attempt.order_reference or "", self.course_id
            )
        except CommerceError as exc:
            self.attempt.verification_result(exc)
            return self.attempt.state
        self.attempt.verification_result(None)
        return self.attempt.state


__all__ = [
    "CheckoutFlow",
    "CommerceClient",
    "PlaybackSession",
    "error_from_response",
]
