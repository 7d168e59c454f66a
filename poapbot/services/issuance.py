"""
poapbot.services.issuance — Badge Issuance API Client
======================================================

Thin async wrapper over the POAP REST API:

* ``GET  /events/id/{id}``          → event metadata
* ``GET  /actions/scan/{address}``  → badges owned by an address
* ``POST /event/{id}/qr-codes``     → claim links for an event (auth)
* ``POST /actions/claim-qr``        → mint one badge to an address (auth)
* ``GET  /events/{id}/poaps``       → minted tokens (best-effort stats)

Every call carries the ``X-API-Key`` header.  Authenticated calls also carry
a bearer token obtained through the OAuth client-credentials grant and held
in a :class:`TokenCache`; the token is refreshed five minutes before it
expires, and a 401 invalidates it and retries the call exactly once.

Every failure surfaces as :class:`~poapbot.exceptions.IssuanceAPIError`
(timeouts as :class:`~poapbot.exceptions.IssuanceTimeoutError`).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from poapbot.config import PoapBotConfig
from poapbot.exceptions import IssuanceAPIError, IssuanceTimeoutError

logger = logging.getLogger(__name__)

REFRESH_MARGIN = 300  # seconds before expiry at which the token is renewed


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Badge:
    """One badge held by an address."""

    event_id: int
    event_name: str
    image_url: str | None = None
    token_id: str | None = None
    created: str | None = None

    @classmethod
    def from_scan(cls, item: dict) -> Badge:
        event = item.get("event") or {}
        return cls(
            event_id=int(event.get("id", 0)),
            event_name=event.get("name") or "Unknown event",
            image_url=event.get("image_url"),
            token_id=str(item["tokenId"]) if item.get("tokenId") is not None else None,
            created=item.get("created"),
        )


@dataclass(frozen=True, slots=True)
class ClaimResult:
    tx_hash: str | None = None


# ---------------------------------------------------------------------------
# Token cache
# ---------------------------------------------------------------------------
class TokenCache:
    """Bearer token with expiry, shared by every call of one client.

    Concurrent callers wait on a single lock so only one refresh is in
    flight at a time.
    """

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at - REFRESH_MARGIN

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def get(self, fetch) -> str:
        """Return the cached token, calling ``await fetch()`` when stale.

        *fetch* must return ``(token, expires_in_seconds)``.
        """
        async with self._lock:
            if not self.valid():
                token, expires_in = await fetch()
                self._token = token
                self._expires_at = self._clock() + expires_in
                logger.info("Issuance access token refreshed (expires in %ds)", expires_in)
            return self._token  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class IssuanceClient:
    """Async client for the badge issuance service."""

    def __init__(
        self,
        cfg: PoapBotConfig,
        *,
        api_key: str | None,
        client_id: str | None,
        client_secret: str | None,
        http: httpx.AsyncClient | None = None,
        token_cache: TokenCache | None = None,
    ) -> None:
        self.base_url = cfg.issuance_base_url.rstrip("/")
        self.auth_url = cfg.issuance_auth_url
        self.audience = cfg.issuance_audience
        self.api_key = api_key
        self.client_id = client_id
        self.client_secret = client_secret
        self.tokens = token_cache or TokenCache()
        self._http = http or httpx.AsyncClient(timeout=cfg.request_timeout)

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- Auth ---------------------------------------------------------------

    async def _fetch_token(self) -> tuple[str, float]:
        if not (self.client_id and self.client_secret):
            raise IssuanceAPIError(401, "Issuance client credentials are not configured")
        try:
            resp = await self._http.post(
                self.auth_url,
                json={
                    "audience": self.audience,
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
            )
        except httpx.TimeoutException as exc:
            raise IssuanceTimeoutError("token request timed out") from exc
        except httpx.HTTPError as exc:
            raise IssuanceAPIError(None, f"token request failed: {exc.__class__.__name__}") from exc

        if resp.status_code != 200:
            raise IssuanceAPIError(resp.status_code, f"auth failed: {resp.text[:200]}")
        data = resp.json()
        return data["access_token"], float(data.get("expires_in", 3600))

    # -- Transport ----------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        auth: bool = False,
    ) -> Any:
        headers = {"X-API-Key": self.api_key or ""}
        if auth:
            headers["Authorization"] = f"Bearer {await self.tokens.get(self._fetch_token)}"

        resp = await self._send(method, path, headers=headers, json=json)

        if auth and resp.status_code == 401:
            logger.warning("Issuance token rejected on %s %s; refreshing once", method, path)
            self.tokens.invalidate()
            headers["Authorization"] = f"Bearer {await self.tokens.get(self._fetch_token)}"
            resp = await self._send(method, path, headers=headers, json=json)

        if resp.status_code >= 400:
            raise IssuanceAPIError(resp.status_code, resp.text[:300] or resp.reason_phrase)
        try:
            return resp.json()
        except ValueError as exc:
            raise IssuanceAPIError(resp.status_code, "response was not JSON") from exc

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.TimeoutException as exc:
            raise IssuanceTimeoutError(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise IssuanceAPIError(None, f"{method} {path} failed: {exc.__class__.__name__}") from exc

    # -- Public API ---------------------------------------------------------

    async def get_event(self, event_id: int) -> dict:
        return await self._request("GET", f"/events/id/{int(event_id)}")

    async def get_user_badges(self, address: str) -> list[Badge]:
        data = await self._request("GET", f"/actions/scan/{address}")
        return [Badge.from_scan(item) for item in (data or [])]

    async def get_claim_links(self, event_id: int, secret_code: str) -> list[str]:
        """Unclaimed claim tokens for *event_id*.  Empty means exhausted supply."""
        data = await self._request(
            "POST",
            f"/event/{int(event_id)}/qr-codes",
            json={"secret_code": secret_code},
            auth=True,
        )
        return [
            item["qr_hash"]
            for item in (data or [])
            if item.get("qr_hash") and not item.get("claimed")
        ]

    async def claim(self, claim_token: str, address: str, secret_code: str) -> ClaimResult:
        data = await self._request(
            "POST",
            "/actions/claim-qr",
            json={"qr_hash": claim_token, "address": address, "secret": secret_code},
            auth=True,
        )
        tx_hash = data.get("tx_hash") if isinstance(data, dict) else None
        return ClaimResult(tx_hash=tx_hash)

    async def count_minted(self, event_id: int) -> int | None:
        """Total minted for *event_id*, or ``None`` if the stats call fails."""
        try:
            data = await self._request("GET", f"/events/{int(event_id)}/poaps")
        except IssuanceAPIError as exc:
            logger.info("Minted count unavailable for event %d: %s", event_id, exc)
            return None
        if isinstance(data, dict):
            if data.get("total") is not None:
                return int(data["total"])
            return len(data.get("tokens") or [])
        return len(data or [])
