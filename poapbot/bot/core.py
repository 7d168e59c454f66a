"""
poapbot.bot.core — Bot Instance & Cog Loader
=============================================

:class:`PoapBot` is a ``commands.Bot`` subclass that carries the shared
config, DB engine and the wired :class:`~poapbot.bootstrap.AppContext`
(store, engines, event bus, command dispatcher) so every Cog reaches
them through ``self.bot``.

Slash commands are synced on ready: to ``DEV_GUILD_ID`` when set
(instant), otherwise globally.
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from poapbot.bootstrap import AppContext, build_context
from poapbot.bot.platform import DiscordPlatform
from poapbot.config import PoapBotConfig, Secrets

logger = logging.getLogger(__name__)

EXTENSIONS: list[str] = [
    "poapbot.bot.cogs.automation",
    "poapbot.bot.cogs.commands",
]


class PoapBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state."""

    def __init__(self, cfg: PoapBotConfig, engine: Engine, secrets: Secrets) -> None:
        intents = discord.Intents.default()
        intents.members = True            # Privileged: member_join trigger
        intents.message_content = False
        intents.presences = False

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            description=f"{cfg.community_name} POAP bot",
        )

        self.cfg = cfg
        self.engine = engine
        self.platform = DiscordPlatform(self)
        self.ctx: AppContext = build_context(cfg, engine, secrets, platform=self.platform)

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load cogs and probe name providers before connecting."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

        await self.ctx.start()

    async def on_ready(self) -> None:
        assert self.user is not None
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def close(self) -> None:
        logger.info("Bot shutting down…")
        await self.ctx.close()
        await super().close()
