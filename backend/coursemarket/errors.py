"""Error taxonomy shared by the commerce services and the HTTP layer.

Services raise these; routes never catch them individually. A single
exception handler registered in ``main`` renders every ``CommerceError`` as
``{"detail": ..., "code": ..., **extra}`` with the error's status code.
"""

from __future__ import annotations

from typing import Any, Sequence

from fastapi import status


class CommerceError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "commerce_error"

    def __init__(self, detail: str, *, status_code: int | None = None) -> None:
        super().__init__(detail)
        if status_code:
            self.status_code = status_code
        self.detail = detail

    def extra(self) -> dict[str, Any]:
        return {}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.detail, "code": self.code}
        payload.update(self.extra())
        return payload


class AuthRequiredError(CommerceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "auth_required"

    def __init__(self, detail: str = "login required") -> None:
        super().__init__(detail)

    def extra(self) -> dict[str, Any]:
        return {"action": "login"}


class EntitlementError(CommerceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_entitled"

    def __init__(
        self,
        detail: str = "purchase required",
        *,
        course_id: str | None = None,
        ebook_id: str | None = None,
    ) -> None:
        super().__init__(detail)
        self.course_id = course_id
        self.ebook_id = ebook_id

    def extra(self) -> dict[str, Any]:
        if self.ebook_id is not None:
            return {"action": "purchase", "ebook_id": self.ebook_id}
        return {"action": "purchase", "course_id": self.course_id}


class NotFoundError(CommerceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class MediaUnavailableError(CommerceError):
    status_code = status.HTTP_409_CONFLICT
    code = "media_unavailable"

    def __init__(self, detail: str = "lesson media is not yet available") -> None:
        super().__init__(detail)


class TokenFetchError(CommerceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "token_fetch_failed"

    def __init__(self, cause: str, *, upstream_status: int | None = None) -> None:
        super().__init__(f"could not obtain playback token: {cause}")
        self.cause = cause
        self.upstream_status = upstream_status

    def extra(self) -> dict[str, Any]:
        return {"cause": self.cause, "retryable": True}


class DownloadUnavailableError(CommerceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "download_unavailable"

    def __init__(self, detail: str = "download link could not be created") -> None:
        super().__init__(detail)

    def extra(self) -> dict[str, Any]:
        return {"retryable": True}


class PaymentCancelledError(CommerceError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "payment_cancelled"

    def __init__(self, detail: str = "payment was cancelled") -> None:
        super().__init__(detail)


class PaymentFailedError(CommerceError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "payment_failed"

    def __init__(self, detail: str = "payment failed") -> None:
        super().__init__(detail)


class VerificationFailedError(CommerceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "verification_failed"

    def __init__(self, detail: str = "payment could not be verified") -> None:
        super().__init__(detail)

    def extra(self) -> dict[str, Any]:
        return {"retryable": True}


class ConflictError(CommerceError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class ValidationError(CommerceError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_failed"

    def __init__(self, missing: str | Sequence[str]) -> None:
        items = [missing] if isinstance(missing, str) else list(missing)
        super().__init__("; ".join(items) or "validation failed")
        self.missing = items

    def extra(self) -> dict[str, Any]:
        return {"missing": self.missing}


class MediaReleaseError(CommerceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "media_release_failed"

    def __init__(self, failed_media_ids: Sequence[str]) -> None:
        ids = list(failed_media_ids)
        super().__init__(
            f"could not release {len(ids)} media item(s); nothing was deleted"
        )
        self.failed_media_ids = ids

    def extra(self) -> dict[str, Any]:
        return {"failed_media_ids": self.failed_media_ids}


class InvalidTransitionError(CommerceError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"


__all__ = [
    "AuthRequiredError",
    "CommerceError",
    "ConflictError",
    "DownloadUnavailableError",
    "EntitlementError",
    "InvalidTransitionError",
    "MediaReleaseError",
    "MediaUnavailableError",
    "NotFoundError",
    "PaymentCancelledError",
    "PaymentFailedError",
    "TokenFetchError",
    "ValidationError",
    "VerificationFailedError",
]
