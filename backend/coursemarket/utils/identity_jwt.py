"""Verification of identity-provider access tokens against a published JWKS.

The engine never issues identities. Learners and creators sign in with the
identity provider; its RS256/ES256 tokens are checked here against the key
set the provider publishes, fetched asynchronously and cached per URL.
"""

from __future__ import annotations

import time
from typing import Any

import httpx
from jose import JWTError, jwk, jwt

SUPPORTED_ALGORITHMS = ("RS256", "ES256")


class IdentityJwtError(Exception):
    pass


class JwksKeySet:
    def __init__(self, url: str, *, ttl_seconds: float = 300.0, timeout: float = 5.0) -> None:
        self.url = url
        self._ttl_seconds = ttl_seconds
        self._timeout = timeout
        self._keys: dict[str, dict[str, Any]] = {}
        self._fetched_at: float | None = None

    @property
    def stale(self) -> bool:
        if self._fetched_at is None:
            return True
        return time.monotonic() - self._fetched_at >= self._ttl_seconds

    async def refresh(self) -> None:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.get(self.url)
                response.raise_for_status()
                data = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                raise IdentityJwtError(f"Failed to fetch JWKS: {exc}") from exc
        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            raise IdentityJwtError("JWKS response missing keys")
        self._keys = {
            entry["kid"]: entry
            for entry in data["keys"]
            if isinstance(entry, dict) and entry.get("kid")
        }
        self._fetched_at = time.monotonic()

    async def key_for(self, kid: str) -> dict[str, Any]:
        if self.stale:
            await self.refresh()
        key_data = self._keys.get(kid)
        if key_data is None:
            # the provider may have rotated keys since the last fetch
            await self.refresh()
            key_data = self._keys.get(kid)
        if key_data is None:
            raise IdentityJwtError("JWT kid not found in JWKS")
        return key_data


_key_sets: dict[str, JwksKeySet] = {}


def key_set_for(url: str) -> JwksKeySet:
    key_set = _key_sets.get(url)
    if key_set is None:
        key_set = _key_sets[url] = JwksKeySet(url)
    return key_set


async def verify_provider_access_token(
    token: str,
    *,
    jwks_url: str,
    issuer: str | None = None,
) -> dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise IdentityJwtError("Invalid token header") from exc

    alg = header.get("alg")
    if alg not in SUPPORTED_ALGORITHMS:
        raise IdentityJwtError(f"Unsupported JWT alg: {alg}")
    kid = header.get("kid")
    if not kid:
        raise IdentityJwtError("JWT header missing kid")

    key_data = await key_set_for(jwks_url).key_for(kid)
    try:
        return jwt.decode(
            token,
            jwk.construct(key_data, alg),
            algorithms=[alg],
            issuer=issuer,
            options={"verify_aud": False},
        )
    except JWTError as exc:
        raise IdentityJwtError("JWT verification failed") from exc
