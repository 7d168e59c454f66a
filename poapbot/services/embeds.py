"""
poapbot.services.embeds — Discord embed builders
=================================================

All embed construction lives here so command handlers only supply data.
Builders return :class:`discord.Embed`; the webhook binding serializes
them with ``Embed.to_dict()``, the gateway bot sends them as-is.
"""

from __future__ import annotations

from collections.abc import Sequence

import discord

from poapbot.constants import (
    COLOR_BRAND,
    COLOR_DANGER,
    COLOR_SUCCESS,
    COLOR_WARNING,
    MAX_LISTED,
    trigger_display_name,
)
from poapbot.database.models import AccessGate, AutomationRule, GateType
from poapbot.services.issuance import Badge

POAP_LOGO = "https://assets.poap.xyz/logo-512.png"


def _date_only(created: str | None) -> str:
    return created.split("T")[0].split(" ")[0] if created else "N/A"


# ---------------------------------------------------------------------------
# Wallets & collections
# ---------------------------------------------------------------------------
def build_wallet_linked_embed(address: str, display_name: str, was_name_lookup: bool) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f517 Wallet Linked Successfully!",
        description=f"Your Discord account has been linked to:\n`{address}`",
        color=COLOR_SUCCESS,
    )
    embed.add_field(
        name="\U0001f4dd Input",
        value=f"Name: {display_name} → {address}" if was_name_lookup else f"Address: {display_name}",
        inline=False,
    )
    embed.add_field(
        name="\U0001f4dd Note",
        value="This wallet will be used for POAP distributions in this server.",
        inline=False,
    )
    embed.add_field(
        name="\U0001f50d View POAPs", value="Use `/my-badges` to see your POAP collection!", inline=False
    )
    embed.add_field(
        name="\U0001f6aa Access Check",
        value="Checking for POAP-gated roles and channels...",
        inline=False,
    )
    return embed


def build_empty_collection_embed(address: str, display_name: str) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f4ed No POAPs Found",
        description=f"No POAPs found for: **{display_name}**\n`{address}`",
        color=COLOR_WARNING,
    )
    return embed


def build_collection_embed(address: str, display_name: str, badges: Sequence[Badge]) -> discord.Embed:
    """Count, latest ten badges and a thumbnail for one address."""
    latest = list(badges)[:MAX_LISTED]
    lines = [
        f"**{i}.** {badge.event_name} *({_date_only(badge.created)})*"
        for i, badge in enumerate(latest, start=1)
    ]
    embed = discord.Embed(
        title="\U0001f3ab POAP Collection",
        description=f"**{display_name}** owns **{len(badges)}** POAPs\n\U0001f4cd `{address}`",
        color=COLOR_BRAND,
    )
    embed.add_field(name="\U0001f5d3️ Latest POAPs", value="\n".join(lines), inline=False)
    thumb = next((b.image_url for b in latest if b.image_url), None)
    if thumb:
        embed.set_thumbnail(url=thumb)
    embed.set_footer(text=f"Latest {len(latest)} of {len(badges)} POAPs", icon_url=POAP_LOGO)
    return embed


# ---------------------------------------------------------------------------
# Events & distributions
# ---------------------------------------------------------------------------
def build_event_embed(event_id: int, event: dict, minted: int | None) -> discord.Embed:
    embed = discord.Embed(
        title=f"\U0001f3ab {event.get('name') or f'Event #{event_id}'}",
        description=event.get("description") or "No description available",
        color=COLOR_BRAND,
    )
    embed.add_field(name="\U0001f194 Event ID", value=str(event_id), inline=True)
    embed.add_field(name="\U0001f4c5 Start Date", value=event.get("start_date") or "N/A", inline=True)
    embed.add_field(name="\U0001f4c5 End Date", value=event.get("end_date") or "N/A", inline=True)
    embed.add_field(name="\U0001f3e2 Organizer", value=event.get("organizer") or "N/A", inline=True)
    embed.add_field(name="\U0001f30d Country", value=event.get("country") or "N/A", inline=True)
    embed.add_field(name="\U0001f3d9️ City", value=event.get("city") or "N/A", inline=True)
    if minted:
        embed.add_field(name="\U0001f4ca Total Minted", value=str(minted), inline=True)
    if event.get("supply"):
        embed.add_field(name="\U0001f3af Supply", value=str(event["supply"]), inline=True)
    if event.get("event_url"):
        embed.add_field(
            name="\U0001f517 Event URL", value=f"[View Event]({event['event_url']})", inline=False
        )
    if event.get("image_url"):
        embed.set_thumbnail(url=event["image_url"])
    return embed


def build_distributed_embed(
    recipient_id: int, address: str, event_id: int, event: dict, tx_hash: str | None
) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f389 POAP Distributed Successfully!",
        description=f"**{event.get('name', f'Event #{event_id}')}** has been sent to <@{recipient_id}>",
        color=COLOR_SUCCESS,
    )
    embed.add_field(name="\U0001f464 Recipient", value=f"<@{recipient_id}> ({address})", inline=True)
    embed.add_field(name="\U0001f3ab Event ID", value=str(event_id), inline=True)
    embed.add_field(name="\U0001f4c5 Event Date", value=event.get("start_date") or "N/A", inline=True)
    embed.add_field(
        name="\U0001f517 Transaction",
        value=f"[View on Etherscan](https://etherscan.io/tx/{tx_hash})" if tx_hash else "Processing...",
        inline=False,
    )
    if event.get("image_url"):
        embed.set_thumbnail(url=event["image_url"])
    return embed


def build_received_embed(community_name: str, event: dict, distributor_id: int, address: str) -> discord.Embed:
    """DM sent to the recipient of a manual distribution."""
    embed = discord.Embed(
        title="\U0001f381 You received a POAP!",
        description=f"You've been awarded a POAP from **{community_name}**",
        color=COLOR_BRAND,
    )
    embed.add_field(name="\U0001f3ab Event", value=event.get("name") or "Unknown event", inline=False)
    embed.add_field(name="\U0001f464 Distributed by", value=f"<@{distributor_id}>", inline=False)
    embed.add_field(name="\U0001f4b3 Sent to", value=address, inline=False)
    if event.get("image_url"):
        embed.set_thumbnail(url=event["image_url"])
    return embed


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------
def build_gate_created_embed(gate: AccessGate, events: Sequence[tuple[int, str]]) -> discord.Embed:
    is_role = gate.gate_type == GateType.ROLE
    mention = f"<@&{gate.role_id}>" if is_role else f"<#{gate.channel_id}>"
    embed = discord.Embed(
        title="\U0001f6aa Role Gate Created" if is_role else "\U0001f6aa Channel Gate Created",
        description=(
            f"Users must own specific POAPs to receive the {mention} role"
            if is_role
            else f"Users must own specific POAPs to access {mention}"
        ),
        color=COLOR_SUCCESS,
    )
    embed.add_field(
        name="\U0001f3af Target Role" if is_role else "\U0001f3af Target Channel", value=mention, inline=True
    )
    embed.add_field(name="\U0001f194 Gate ID", value=str(gate.id), inline=True)
    embed.add_field(
        name="\U0001f3ab Required POAPs",
        value="\n".join(f"• {name} ({event_id})" for event_id, name in events),
        inline=False,
    )
    return embed


def build_gate_list_embed(gates: Sequence[AccessGate]) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f6aa POAP Gates",
        description=f"{len(gates)} gate(s) configured for this server",
        color=COLOR_BRAND,
    )
    lines = []
    for gate in list(gates)[:MAX_LISTED]:
        target = f"<@&{gate.role_id}>" if gate.gate_type == GateType.ROLE else f"<#{gate.channel_id}>"
        required = ", ".join(str(i) for i in gate.required_event_ids)
        lines.append(f"**ID {gate.id}** • {gate.gate_type} → {target}\n   Requires: {required}")
    embed.add_field(name="\U0001f4cb Active Gates", value="\n".join(lines) or "None", inline=False)
    if len(gates) > MAX_LISTED:
        embed.add_field(
            name="\U0001f4ca Note", value=f"Showing {MAX_LISTED} of {len(gates)} total gates", inline=False
        )
    return embed


def build_gate_removed_embed(gate_id: int) -> discord.Embed:
    return discord.Embed(
        title="\U0001f5d1️ Gate Removed",
        description=f"POAP gate {gate_id} has been deleted",
        color=COLOR_DANGER,
    )


# ---------------------------------------------------------------------------
# Automation rules
# ---------------------------------------------------------------------------
def build_rule_created_embed(rule: AutomationRule, event_name: str) -> discord.Embed:
    embed = discord.Embed(
        title="⚡ Auto-Distribution Rule Created",
        description="POAPs will be automatically distributed when the trigger occurs",
        color=COLOR_SUCCESS,
    )
    embed.add_field(name="\U0001f3af Trigger", value=trigger_display_name(rule.trigger_type), inline=True)
    embed.add_field(name="\U0001f194 Rule ID", value=str(rule.id), inline=True)
    embed.add_field(name="\U0001f3ab Event", value=f"{event_name} ({rule.event_id})", inline=False)
    embed.add_field(
        name="⚠️ Note",
        value="Users must have linked wallets to receive POAPs automatically",
        inline=False,
    )
    return embed


def build_rule_list_embed(rules: Sequence[AutomationRule]) -> discord.Embed:
    embed = discord.Embed(
        title="⚡ Auto-Distribution Rules",
        description=f"{len(rules)} rule(s) configured for this server",
        color=COLOR_BRAND,
    )
    lines = [
        f"**ID {rule.id}** • {trigger_display_name(rule.trigger_type)} → "
        f"Event {rule.event_id} {'✅' if rule.active else '❌'}"
        for rule in list(rules)[:MAX_LISTED]
    ]
    embed.add_field(name="\U0001f4cb Rules", value="\n".join(lines) or "None", inline=False)
    if len(rules) > MAX_LISTED:
        embed.add_field(
            name="\U0001f4ca Note", value=f"Showing {MAX_LISTED} of {len(rules)} total rules", inline=False
        )
    return embed


def build_rule_toggled_embed(rule: AutomationRule) -> discord.Embed:
    embed = discord.Embed(
        title="\U0001f504 Rule Status Updated",
        description=(
            f"Auto-distribution rule {rule.id} has been {'enabled' if rule.active else 'disabled'}"
        ),
        color=COLOR_SUCCESS if rule.active else COLOR_WARNING,
    )
    embed.add_field(name="\U0001f3af Trigger", value=trigger_display_name(rule.trigger_type), inline=True)
    embed.add_field(name="\U0001f3ab Event ID", value=str(rule.event_id), inline=True)
    embed.add_field(
        name="\U0001f4ca Status", value="✅ Active" if rule.active else "❌ Inactive", inline=True
    )
    return embed
