"""Signed download links for purchased e-book files in Supabase Storage."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote

import httpx

from ..config import settings


class EbookStorageError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EbookFileMissingError(EbookStorageError):
    pass


@dataclass(frozen=True, slots=True)
class SignedDownload:
    url: str
    expires_at: datetime
    filename: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "download_url": self.url,
            "expires_at": self.expires_at.isoformat(),
            "filename": self.filename,
        }


class EbookStorage:
    def __init__(
        self,
        *,
        bucket: str | None = None,
        supabase_url: str | None = None,
        service_role_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._bucket = (bucket or settings.ebook_files_bucket).strip()
        self._supabase_url = supabase_url or (
            settings.supabase_url.unicode_string() if settings.supabase_url is not None else None
        )
        self._service_role_key = service_role_key or settings.supabase_service_role_key
        self._timeout = timeout or settings.storage_timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self._supabase_url and self._service_role_key)

    async def signed_download(self, path: str, *, ttl_seconds: int, filename: str) -> SignedDownload:
        if not path:
            raise EbookFileMissingError("e-book file path is empty")
        if not self.enabled:
            raise EbookStorageError("Supabase Storage is not configured")

        base_url = str(self._supabase_url).rstrip("/")
        normalized_path = path.lstrip("/")
        expires_in = max(60, min(int(ttl_seconds), 60 * 60))
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.post(
                    f"{base_url}/storage/v1/object/sign/{self._bucket}/{normalized_path}",
                    json={"expiresIn": expires_in},
                    headers={
                        "apikey": self._service_role_key,
                        "Authorization": f"Bearer {self._service_role_key}",
                        "Content-Type": "application/json",
                    },
                )
            except httpx.HTTPError as exc:
                raise EbookStorageError("Failed to call Supabase Storage") from exc

        if response.status_code == 404 or (
            response.status_code == 400 and "not_found" in response.text
        ):
            raise EbookFileMissingError(
                "e-book file not found in storage", status_code=response.status_code
            )
        if response.status_code >= 400:
            raise EbookStorageError(
                f"Supabase Storage signing failed with status {response.status_code}",
                status_code=response.status_code,
            )

        signed_path = (response.json() or {}).get("signedURL")
        if not signed_path:
            raise EbookStorageError("signedURL missing in Supabase response")
        connector = "&" if "?" in signed_path else "?"
        signed_path = f"{signed_path}{connector}download={quote(filename, safe='')}"
        if signed_path.startswith("/object/"):
            url = f"{base_url}/storage/v1{signed_path}"
        elif signed_path.startswith("/"):
            url = f"{base_url}{signed_path}"
        else:
            url = signed_path
        return SignedDownload(
            url=url,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            filename=filename,
        )


_ebook_storage: EbookStorage | None = None


def get_ebook_storage() -> EbookStorage:
    global _ebook_storage
    if _ebook_storage is None:
        _ebook_storage = EbookStorage()
    return _ebook_storage
