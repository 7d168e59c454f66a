"""
poapbot.gateway.rest — Discord REST platform binding
=====================================================

:class:`~poapbot.engine.platform.Platform` over the Discord HTTP API,
authenticated with the bot token.  Used by the webhook deployment, where
no gateway connection (and no member cache) exists.
"""

from __future__ import annotations

import logging

import httpx

from poapbot.constants import CHANNEL_GRANT_BITS
from poapbot.gateway.responses import DISCORD_API

logger = logging.getLogger(__name__)

MEMBER_OVERWRITE = 1


class RestPlatform:
    def __init__(self, token: str, http: httpx.AsyncClient, *, api_base: str = DISCORD_API) -> None:
        self.http = http
        self.api_base = api_base.rstrip("/")
        self.headers = {"Authorization": f"Bot {token}"}

    async def _call(self, method: str, path: str, **kwargs) -> httpx.Response:
        resp = await self.http.request(
            method, f"{self.api_base}{path}", headers=self.headers, **kwargs
        )
        resp.raise_for_status()
        return resp

    # -- Roles ---------------------------------------------------------------

    async def has_role(self, community_id: int, user_id: int, role_id: int) -> bool:
        member = (await self._call("GET", f"/guilds/{community_id}/members/{user_id}")).json()
        return str(role_id) in {str(r) for r in member.get("roles", [])}

    async def add_role(self, community_id: int, user_id: int, role_id: int) -> None:
        await self._call("PUT", f"/guilds/{community_id}/members/{user_id}/roles/{role_id}")

    # -- Channels ------------------------------------------------------------

    async def has_channel_access(self, community_id: int, user_id: int, channel_id: int) -> bool:
        channel = (await self._call("GET", f"/channels/{channel_id}")).json()
        for overwrite in channel.get("permission_overwrites", []):
            if str(overwrite.get("id")) == str(user_id) and int(overwrite.get("type", -1)) == MEMBER_OVERWRITE:
                return int(overwrite.get("allow", 0)) & CHANNEL_GRANT_BITS == CHANNEL_GRANT_BITS
        return False

    async def grant_channel_access(self, community_id: int, user_id: int, channel_id: int) -> None:
        await self._call(
            "PUT",
            f"/channels/{channel_id}/permissions/{user_id}",
            json={"allow": str(CHANNEL_GRANT_BITS), "deny": "0", "type": MEMBER_OVERWRITE},
        )

    # -- Direct messages -----------------------------------------------------

    async def send_direct_message(
        self, user_id: int, content: str | None = None, *, embed: dict | None = None
    ) -> None:
        dm = (await self._call("POST", "/users/@me/channels", json={"recipient_id": str(user_id)})).json()
        message: dict = {}
        if content:
            message["content"] = content
        if embed:
            message["embeds"] = [embed]
        await self._call("POST", f"/channels/{dm['id']}/messages", json=message)
