"""
poapbot.bot.cogs.automation — Trigger capture
==============================================

Turns gateway events into :class:`~poapbot.engine.events.TriggerEvent`
objects on the shared event bus:

* ``on_member_join``      → ``member_join``   (needs the GUILD_MEMBERS intent)
* ``on_raw_reaction_add`` → ``reaction_add``  (raw, so uncached messages count)
* ``on_message``          → ``message_sent``

Bots and direct messages are ignored.  The rule engine and gate reconciler
do the rest.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from poapbot.database.models import TriggerType
from poapbot.engine.events import TriggerEvent

if TYPE_CHECKING:
    from poapbot.bot.core import PoapBot

logger = logging.getLogger(__name__)


class Automation(commands.Cog, name="Automation"):
    """Publishes member, reaction and message triggers to the event bus."""

    def __init__(self, bot: PoapBot) -> None:
        self.bot = bot

    async def _publish(self, event: TriggerEvent) -> None:
        delivered = await self.bot.ctx.bus.publish(event)
        logger.debug(
            "Published %s for user %d in guild %d to %d handler(s)",
            event.trigger_type, event.user_id, event.community_id, delivered,
        )

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member) -> None:
        try:
            if member.bot:
                return
            logger.info("Member joined: %s (ID: %d)", member.display_name, member.id)
            await self._publish(TriggerEvent(
                community_id=member.guild.id,
                trigger_type=TriggerType.MEMBER_JOIN,
                user_id=member.id,
                context={"community_name": member.guild.name},
            ))
        except Exception:
            logger.exception("Error processing member_join for %s", member.id)

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        """Fire when any reaction is added, even on uncached messages."""
        try:
            if payload.guild_id is None:
                return
            if payload.member is not None and payload.member.bot:
                return
            await self._publish(TriggerEvent(
                community_id=payload.guild_id,
                trigger_type=TriggerType.REACTION_ADD,
                user_id=payload.user_id,
                context={
                    "channel_id": payload.channel_id,
                    "message_id": payload.message_id,
                    "emoji": str(payload.emoji),
                },
            ))
        except Exception:
            logger.exception(
                "Error processing reaction on message %s from user %s",
                payload.message_id, payload.user_id,
            )

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        try:
            if message.author.bot or message.guild is None:
                return
            await self._publish(TriggerEvent(
                community_id=message.guild.id,
                trigger_type=TriggerType.MESSAGE_SENT,
                user_id=message.author.id,
                context={
                    "channel_id": message.channel.id,
                    "message_id": message.id,
                },
            ))
        except Exception:
            logger.exception(
                "Error processing message %s from user %s", message.id, message.author.id,
            )


async def setup(bot: PoapBot) -> None:
    await bot.add_cog(Automation(bot))
