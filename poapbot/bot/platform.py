"""
poapbot.bot.platform — discord.py bindings
===========================================

* :class:`DiscordPlatform` — the engines' platform capability over a live
  :class:`discord.Client` (member cache first, REST fetch on a miss).
* :class:`DiscordResponseSink` — :class:`~poapbot.gateway.responses.ResponseSink`
  over a :class:`discord.Interaction`.
"""

from __future__ import annotations

import logging

import discord

from poapbot.gateway.responses import Reply

logger = logging.getLogger(__name__)

GATE_REASON = "POAP gate"


class DiscordPlatform:
    def __init__(self, client: discord.Client) -> None:
        self.client = client

    async def _member(self, community_id: int, user_id: int) -> tuple[discord.Guild, discord.Member]:
        guild = self.client.get_guild(community_id)
        if guild is None:
            guild = await self.client.fetch_guild(community_id)
        member = guild.get_member(user_id) or await guild.fetch_member(user_id)
        return guild, member

    async def has_role(self, community_id: int, user_id: int, role_id: int) -> bool:
        _, member = await self._member(community_id, user_id)
        return any(role.id == role_id for role in member.roles)

    async def add_role(self, community_id: int, user_id: int, role_id: int) -> None:
        guild, member = await self._member(community_id, user_id)
        role = guild.get_role(role_id)
        if role is None:
            raise LookupError(f"Role {role_id} not found in guild {community_id}")
        await member.add_roles(role, reason=GATE_REASON)

    async def _channel(self, guild: discord.Guild, channel_id: int) -> discord.abc.GuildChannel:
        channel = guild.get_channel(channel_id)
        if channel is None:
            channel = await guild.fetch_channel(channel_id)
        return channel

    async def has_channel_access(self, community_id: int, user_id: int, channel_id: int) -> bool:
        guild, member = await self._member(community_id, user_id)
        overwrite = (await self._channel(guild, channel_id)).overwrites_for(member)
        return bool(overwrite.view_channel and overwrite.send_messages and overwrite.read_message_history)

    async def grant_channel_access(self, community_id: int, user_id: int, channel_id: int) -> None:
        guild, member = await self._member(community_id, user_id)
        channel = await self._channel(guild, channel_id)
        await channel.set_permissions(
            member,
            view_channel=True,
            send_messages=True,
            read_message_history=True,
            reason=GATE_REASON,
        )

    async def send_direct_message(
        self, user_id: int, content: str | None = None, *, embed: dict | None = None
    ) -> None:
        user = self.client.get_user(user_id) or await self.client.fetch_user(user_id)
        kwargs: dict = {}
        if content:
            kwargs["content"] = content
        if embed:
            kwargs["embed"] = discord.Embed.from_dict(embed)
        await user.send(**kwargs)


class DiscordResponseSink:
    """Response sink for an interaction received over the gateway."""

    def __init__(self, interaction: discord.Interaction) -> None:
        self.interaction = interaction
        self._deferred = False
        self._original_filled = False

    @staticmethod
    def _message_kwargs(reply: Reply) -> dict:
        kwargs: dict = {}
        if reply.content is not None:
            kwargs["content"] = reply.content
        if reply.embeds:
            kwargs["embeds"] = list(reply.embeds)
        if reply.link is not None:
            view = discord.ui.View()
            view.add_item(discord.ui.Button(
                label=reply.link.label, url=reply.link.url, emoji=reply.link.emoji,
            ))
            kwargs["view"] = view
        return kwargs

    async def respond(self, reply: Reply) -> None:
        kwargs = self._message_kwargs(reply)
        if not self.interaction.response.is_done():
            self._original_filled = True
            await self.interaction.response.send_message(ephemeral=reply.ephemeral, **kwargs)
        elif self._deferred and not self._original_filled:
            self._original_filled = True
            await self.interaction.edit_original_response(**kwargs)
        else:
            await self.interaction.followup.send(ephemeral=reply.ephemeral, **kwargs)

    async def acknowledge(self) -> None:
        if not self.interaction.response.is_done():
            await self.interaction.response.defer()
            self._deferred = True

    async def deferred_acknowledge(self, *, ephemeral: bool = False) -> None:
        if not self.interaction.response.is_done():
            await self.interaction.response.defer(ephemeral=ephemeral, thinking=True)
            self._deferred = True
