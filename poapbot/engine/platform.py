"""
poapbot.engine.platform — Platform Capability
==============================================

The handful of chat-platform side effects the engines need.  Implemented
once over the Discord REST API (:mod:`poapbot.gateway.rest`) and once over
discord.py (:mod:`poapbot.bot.platform`).  Methods raise on failure;
callers decide whether a failure matters.
"""

from __future__ import annotations

from typing import Protocol


class Platform(Protocol):
    async def has_role(self, community_id: int, user_id: int, role_id: int) -> bool: ...

    async def add_role(self, community_id: int, user_id: int, role_id: int) -> None: ...

    async def has_channel_access(self, community_id: int, user_id: int, channel_id: int) -> bool: ...

    async def grant_channel_access(self, community_id: int, user_id: int, channel_id: int) -> None:
        """Allow view, send and read-history for *user_id* on *channel_id*."""
        ...

    async def send_direct_message(
        self, user_id: int, content: str | None = None, *, embed: dict | None = None
    ) -> None: ...
