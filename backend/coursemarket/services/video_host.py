from __future__ import annotations

import base64
import re
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
from jose import jwt
from jose.exceptions import JOSEError

from ..config import settings

_MEDIA_ID_RE = re.compile(r"^[a-f0-9]{32}$")
_MEDIA_URL_PATTERNS = (
    re.compile(r"cloudflarestream\.com/([a-f0-9]{32})"),
    re.compile(r"videodelivery\.net/([a-f0-9]{32})"),
)


class VideoHostError(RuntimeError):
    """Raised when Cloudflare Stream rejects a request or is unreachable."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class SignedCredential:
    credential: str
    media_id: str
    host_domain: str
    expires_in: int


def extract_media_id(url_or_id: str) -> str:
    """Return the Stream video id from a bare id or a Stream URL."""

    value = (url_or_id or "").strip()
    if _MEDIA_ID_RE.match(value):
        return value
    for pattern in _MEDIA_URL_PATTERNS:
        match = pattern.search(value)
        if match:
            return match.group(1)
    return value


class VideoHostClient:
    def __init__(
        self,
        *,
        account_id: str | None = None,
        api_token: str | None = None,
        key_id: str | None = None,
        signing_key: str | None = None,
        customer_subdomain: str | None = None,
        api_base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._account_id = account_id or settings.cf_account_id
        self._api_token = api_token or settings.cf_api_token
        self._key_id = key_id or settings.cf_stream_key_id
        self._signing_key = signing_key or settings.cf_stream_signing_key
        self._customer_subdomain = customer_subdomain or settings.cf_stream_customer_subdomain
        self._api_base_url = (api_base_url or settings.cf_api_base_url).rstrip("/")
        self._timeout = timeout or settings.video_host_timeout_seconds

    @property
    def host_domain(self) -> str:
        if not self._customer_subdomain:
            raise VideoHostError("Stream customer subdomain is not configured")
        return f"{self._customer_subdomain}.cloudflarestream.com"

    @property
    def api_enabled(self) -> bool:
        return bool(self._account_id and self._api_token)

    @property
    def signing_enabled(self) -> bool:
        return bool(self._key_id and self._signing_key)

    def _stream_url(self, media_id: str, suffix: str = "") -> str:
        if not self.api_enabled:
            raise VideoHostError("Cloudflare Stream API is not configured")
        quoted = quote(media_id, safe="")
        return f"{self._api_base_url}/accounts/{self._account_id}/stream/{quoted}{suffix}"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_token}"}

    def _private_key_pem(self) -> str:
        try:
            return base64.b64decode(self._signing_key or "").decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise VideoHostError("Stream signing key is not valid base64 PEM") from exc

    def sign_token(
        self,
        media_id: str,
        *,
        ttl_seconds: int,
        claims: dict[str, Any] | None = None,
    ) -> SignedCredential:
        """Sign a Stream playback token locally with the account signing key."""

        if not self.signing_enabled:
            raise VideoHostError("Stream signing key is not configured")
        host_domain = self.host_domain
        payload: dict[str, Any] = {
            "sub": media_id,
            "kid": self._key_id,
            "exp": int(time.time()) + ttl_seconds,
        }
        if claims:
            payload.update(claims)
        try:
            token = jwt.encode(
                payload,
                self._private_key_pem(),
                algorithm="RS256",
                headers={"kid": self._key_id},
            )
        except (JOSEError, ValueError) as exc:
            raise VideoHostError("Stream token signing failed") from exc
        return SignedCredential(
            credential=token,
            media_id=media_id,
            host_domain=host_domain,
            expires_in=ttl_seconds,
        )

    async def request_token(self, media_id: str, *, ttl_seconds: int) -> SignedCredential:
        """Ask Stream to mint a signed playback token for ``media_id``."""

        host_domain = self.host_domain
        request_url = self._stream_url(media_id, "/token")
        payload = {"exp": int(time.time()) + ttl_seconds}

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.post(
                    request_url,
                    json=payload,
                    headers=self._auth_headers(),
                )
            except httpx.HTTPError as exc:
                raise VideoHostError("Failed to call Cloudflare Stream") from exc

        if response.status_code >= 400:
            raise VideoHostError(
                f"Cloudflare Stream token request failed with status {response.status_code}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise VideoHostError("Cloudflare Stream returned invalid JSON") from exc
        result = data.get("result") if isinstance(data, dict) else None
        token = result.get("token") if isinstance(result, dict) else None
        if not token:
            raise VideoHostError("token missing in Cloudflare Stream response")
        return SignedCredential(
            credential=str(token),
            media_id=media_id,
            host_domain=host_domain,
            expires_in=ttl_seconds,
        )

    async def delete_media(self, media_id: str) -> bool:
        """Delete a video. Returns False when the host no longer has it."""

        if not media_id:
            raise VideoHostError("media id is required")
        request_url = self._stream_url(media_id)

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.delete(request_url, headers=self._auth_headers())
            except httpx.HTTPError as exc:
                raise VideoHostError("Failed to call Cloudflare Stream") from exc

        if response.status_code in {200, 204}:
            return True
        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise VideoHostError(
                f"Cloudflare Stream delete failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return True


_video_host: VideoHostClient | None = None


def get_video_host() -> VideoHostClient:
    global _video_host
    if _video_host is None:
        _video_host = VideoHostClient()
    return _video_host
