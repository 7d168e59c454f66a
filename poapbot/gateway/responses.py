"""
poapbot.gateway.responses — Replies & Response Sinks
=====================================================

A :class:`Reply` is what a command handler wants the user to see: text,
embeds, an optional link button and an ephemeral flag.  Handlers never
talk to a transport directly; they hand replies to a
:class:`ResponseSink`, which has exactly three operations:

* ``respond(reply)``             first reply, or edit/follow-up after a defer
* ``acknowledge()``              deferred acknowledgement without "thinking…"
* ``deferred_acknowledge()``     "thinking…" state; the next respond edits it

:class:`WebhookResponseSink` is the HTTP-webhook binding: the first
response becomes the body of the webhook's HTTP reply, anything after that
goes through Discord's webhook REST endpoints.  The discord.py binding lives
in :mod:`poapbot.bot.platform`.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Protocol

import discord
import httpx

from poapbot.constants import EPHEMERAL_FLAG

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"


class InteractionResponseType(enum.IntEnum):
    PONG = 1
    CHANNEL_MESSAGE_WITH_SOURCE = 4
    DEFERRED_CHANNEL_MESSAGE_WITH_SOURCE = 5


# ---------------------------------------------------------------------------
# Reply model
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LinkButton:
    label: str
    url: str
    emoji: str | None = None


@dataclass(frozen=True, slots=True)
class Reply:
    content: str | None = None
    embeds: tuple[discord.Embed, ...] = field(default_factory=tuple)
    link: LinkButton | None = None
    ephemeral: bool = False

    @classmethod
    def text(cls, content: str, *, ephemeral: bool = True) -> Reply:
        return cls(content=content, ephemeral=ephemeral)

    @classmethod
    def embed(cls, embed: discord.Embed, *, link: LinkButton | None = None, ephemeral: bool = False) -> Reply:
        return cls(embeds=(embed,), link=link, ephemeral=ephemeral)

    def to_message_data(self) -> dict:
        """Discord message payload (``data`` of an interaction response)."""
        data: dict = {}
        if self.content is not None:
            data["content"] = self.content
        if self.embeds:
            data["embeds"] = [e.to_dict() for e in self.embeds]
        if self.link is not None:
            button = {"type": 2, "style": 5, "label": self.link.label, "url": self.link.url}
            if self.link.emoji:
                button["emoji"] = {"name": self.link.emoji}
            data["components"] = [{"type": 1, "components": [button]}]
        if self.ephemeral:
            data["flags"] = EPHEMERAL_FLAG
        return data


# ---------------------------------------------------------------------------
# Sink capability
# ---------------------------------------------------------------------------
class ResponseSink(Protocol):
    async def respond(self, reply: Reply) -> None: ...

    async def acknowledge(self) -> None: ...

    async def deferred_acknowledge(self, *, ephemeral: bool = False) -> None: ...


class WebhookResponseSink:
    """Response sink for one webhook-delivered interaction."""

    def __init__(
        self,
        *,
        application_id: str,
        token: str,
        http: httpx.AsyncClient,
        api_base: str = DISCORD_API,
    ) -> None:
        self.application_id = application_id
        self.token = token
        self.http = http
        self.api_base = api_base.rstrip("/")
        self._initial: asyncio.Future[dict] = asyncio.get_running_loop().create_future()
        self._deferred = False
        self._original_filled = False

    @property
    def webhook_url(self) -> str:
        return f"{self.api_base}/webhooks/{self.application_id}/{self.token}"

    # -- ResponseSink ------------------------------------------------------

    async def respond(self, reply: Reply) -> None:
        if not self._initial.done():
            self._original_filled = True
            self._initial.set_result({
                "type": InteractionResponseType.CHANNEL_MESSAGE_WITH_SOURCE,
                "data": reply.to_message_data(),
            })
            return

        if self._deferred and not self._original_filled:
            self._original_filled = True
            resp = await self.http.patch(
                f"{self.webhook_url}/messages/@original", json=reply.to_message_data()
            )
        else:
            resp = await self.http.post(self.webhook_url, json=reply.to_message_data())
        resp.raise_for_status()

    async def acknowledge(self) -> None:
        if not self._initial.done():
            self._initial.set_result(self._deferred_payload(ephemeral=False))

    async def deferred_acknowledge(self, *, ephemeral: bool = False) -> None:
        if not self._initial.done():
            self._initial.set_result(self._deferred_payload(ephemeral))

    # -- Gateway side ------------------------------------------------------

    def _deferred_payload(self, ephemeral: bool) -> dict:
        self._deferred = True
        payload: dict = {"type": InteractionResponseType.DEFERRED_CHANNEL_MESSAGE_WITH_SOURCE}
        if ephemeral:
            payload["data"] = {"flags": EPHEMERAL_FLAG}
        return payload

    async def initial_response(self, deadline: float, *, ephemeral: bool = False) -> dict:
        """The HTTP body for this interaction.

        Waits up to *deadline* seconds for the handler's first reply; after
        that the interaction is deferred (caller-only when *ephemeral*) and
        later replies edit it.
        """
        try:
            return await asyncio.wait_for(asyncio.shield(self._initial), timeout=deadline)
        except TimeoutError:
            if self._initial.done():
                return self._initial.result()
            logger.info("Handler missed the %.1fs deadline; deferring", deadline)
            payload = self._deferred_payload(ephemeral=ephemeral)
            self._initial.set_result(payload)
            return payload
