"""
poapbot.bot.cogs.commands — Slash commands over the gateway
============================================================

discord.py front-end for the six commands.  Each callback only converts
the :class:`discord.Interaction` into a
:class:`~poapbot.gateway.registry.CommandInvocation` and hands it to the
shared :class:`~poapbot.gateway.interactions.CommandDispatcher`, so the
admin check, handler logic and error replies are the same ones the
webhook endpoint runs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord
from discord import app_commands
from discord.ext import commands

from poapbot.bot.platform import DiscordResponseSink
from poapbot.gateway.commands import build_registry
from poapbot.gateway.registry import CommandInvocation, CommandOption

if TYPE_CHECKING:
    from poapbot.bot.core import PoapBot

logger = logging.getLogger(__name__)

_REGISTRY = build_registry()


def _choices(command: str, option: str) -> list[app_commands.Choice[str]]:
    spec = _REGISTRY.get(command)
    assert spec is not None
    for opt in spec.options:
        if opt.name == option:
            return [app_commands.Choice(name=name, value=value) for name, value in opt.choices]
    raise KeyError(f"{command} has no option {option}")


def build_invocation(interaction: discord.Interaction, name: str, **options: Any) -> CommandInvocation:
    """Convert a gateway interaction plus its parsed options."""
    user = interaction.user
    roles = getattr(user, "roles", ())
    return CommandInvocation(
        name=name,
        user_id=user.id,
        community_id=interaction.guild_id,
        options=tuple(
            CommandOption(name=key.replace("_", "-"), value=value)
            for key, value in options.items()
            if value is not None
        ),
        permissions=interaction.permissions.value if interaction.guild_id else 0,
        role_ids=frozenset(role.id for role in roles),
        community_name=interaction.guild.name if interaction.guild else None,
    )


class PoapCommands(commands.Cog, name="POAP"):
    """link-wallet, my-badges, badge-info and the admin commands."""

    def __init__(self, bot: PoapBot) -> None:
        self.bot = bot

    async def _run(self, interaction: discord.Interaction, name: str, **options: Any) -> None:
        invocation = build_invocation(interaction, name, **options)
        await self.bot.ctx.dispatcher.run_command(invocation, DiscordResponseSink(interaction))

    # -------------------------------------------------------------------
    # Member commands
    # -------------------------------------------------------------------
    @app_commands.command(name="link-wallet", description="Link your wallet to receive POAPs")
    @app_commands.describe(address="Wallet address or ENS name (e.g. vitalik.eth)")
    async def link_wallet(self, interaction: discord.Interaction, address: str) -> None:
        await self._run(interaction, "link-wallet", address=address)

    @app_commands.command(name="my-badges", description="View a POAP collection")
    @app_commands.describe(address="Wallet address or ENS name to check (optional)")
    async def my_badges(self, interaction: discord.Interaction, address: str | None = None) -> None:
        await self._run(interaction, "my-badges", address=address)

    @app_commands.command(name="badge-info", description="Get information about a POAP event")
    @app_commands.rename(event_id="event-id")
    @app_commands.describe(event_id="POAP event ID")
    async def badge_info(self, interaction: discord.Interaction, event_id: int) -> None:
        await self._run(interaction, "badge-info", event_id=event_id)

    # -------------------------------------------------------------------
    # Admin commands
    # -------------------------------------------------------------------
    @app_commands.command(
        name="distribute-badge",
        description="Distribute a POAP to a member (Admin only)",
    )
    @app_commands.guild_only()
    @app_commands.rename(event_id="event-id", secret_code="secret-code")
    @app_commands.describe(
        user="Member to receive the POAP",
        event_id="POAP event ID",
        secret_code="Event secret code",
    )
    async def distribute_badge(
        self,
        interaction: discord.Interaction,
        user: discord.Member,
        event_id: int,
        secret_code: str,
    ) -> None:
        await self._run(
            interaction, "distribute-badge",
            user=str(user.id), event_id=event_id, secret_code=secret_code,
        )

    @app_commands.command(
        name="access-gate",
        description="Manage POAP-based access control (Admin only)",
    )
    @app_commands.guild_only()
    @app_commands.rename(badge_ids="badge-ids", gate_id="gate-id")
    @app_commands.describe(
        action="Action to perform",
        target="Role or channel to gate (mention or ID)",
        badge_ids="Required POAP event IDs (comma-separated)",
        gate_id="Gate ID to remove",
    )
    @app_commands.choices(action=_choices("access-gate", "action"))
    async def access_gate(
        self,
        interaction: discord.Interaction,
        action: str,
        target: str | None = None,
        badge_ids: str | None = None,
        gate_id: int | None = None,
    ) -> None:
        await self._run(
            interaction, "access-gate",
            action=action, target=target, badge_ids=badge_ids, gate_id=gate_id,
        )

    @app_commands.command(
        name="auto-distribute",
        description="Set up automatic POAP distribution (Admin only)",
    )
    @app_commands.guild_only()
    @app_commands.rename(event_id="event-id", secret_code="secret-code", rule_id="rule-id")
    @app_commands.describe(
        action="Action to perform",
        trigger="Distribution trigger",
        event_id="POAP event ID",
        secret_code="Event secret code",
        rule_id="Rule ID to toggle",
    )
    @app_commands.choices(
        action=_choices("auto-distribute", "action"),
        trigger=_choices("auto-distribute", "trigger"),
    )
    async def auto_distribute(
        self,
        interaction: discord.Interaction,
        action: str,
        trigger: str | None = None,
        event_id: int | None = None,
        secret_code: str | None = None,
        rule_id: int | None = None,
    ) -> None:
        await self._run(
            interaction, "auto-distribute",
            action=action, trigger=trigger, event_id=event_id,
            secret_code=secret_code, rule_id=rule_id,
        )


async def setup(bot: PoapBot) -> None:
    await bot.add_cog(PoapCommands(bot))
