"""
poapbot.gateway.commands — Slash Command Handlers
==================================================

The six commands, written once against :class:`CommandInvocation` and a
:class:`~poapbot.gateway.responses.ResponseSink`, so the webhook endpoint
and the gateway bot run identical code:

=================  =============================================  ======
Command            Options                                        Access
=================  =============================================  ======
link-wallet        address                                        anyone
my-badges          address?                                       anyone
badge-info         event-id                                       anyone
distribute-badge   user, event-id, secret-code                    admin
access-gate        action, target?, badge-ids?, gate-id?          admin
auto-distribute    action, trigger?, event-id?, secret-code?,     admin
                   rule-id?
=================  =============================================  ======

Handlers raise the :mod:`poapbot.exceptions` taxonomy for anything they
don't phrase themselves; :func:`error_reply` turns those into user-facing
text at the error boundary in :mod:`poapbot.gateway.interactions`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from poapbot.config import PoapBotConfig
from poapbot.constants import PERMISSION_ADMINISTRATOR, PERMISSION_MANAGE_GUILD
from poapbot.database.engine import run_db
from poapbot.database.models import GateType, TriggerType
from poapbot.engine.events import EventBus, WalletLinked
from poapbot.engine.platform import Platform
from poapbot.exceptions import (
    BadgeLookupError,
    ExhaustedSupplyError,
    InvalidInputError,
    IssuanceAPIError,
    ResolutionError,
    StoreError,
)
from poapbot.gateway.registry import (
    CommandInvocation,
    CommandRegistry,
    CommandSpec,
    OptionSpec,
    OptionType,
)
from poapbot.gateway.responses import LinkButton, Reply, ResponseSink
from poapbot.services import embeds
from poapbot.services.catalog import EventCatalog
from poapbot.services.distribution import BadgeDistributor
from poapbot.services.identity import IdentityResolver
from poapbot.services.issuance import IssuanceClient
from poapbot.services.store import EntitlementStore

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "❌ There was an error while executing this command!"
SERVICE_UNAVAILABLE = "❌ The POAP service is unavailable right now. Please try again later."

_MENTION_RE = re.compile(r"^<(?:@&|@!?|#)?(\d+)>$")


@dataclass(frozen=True, slots=True)
class CommandServices:
    """Collaborators shared by every handler."""

    cfg: PoapBotConfig
    store: EntitlementStore
    resolver: IdentityResolver
    issuance: IssuanceClient
    catalog: EventCatalog
    distributor: BadgeDistributor
    bus: EventBus
    platform: Platform | None = None


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------
def is_admin(invocation: CommandInvocation, cfg: PoapBotConfig) -> bool:
    if invocation.permissions & (PERMISSION_MANAGE_GUILD | PERMISSION_ADMINISTRATOR):
        return True
    return cfg.admin_role_id is not None and cfg.admin_role_id in invocation.role_ids


def error_reply(exc: BaseException) -> Reply:
    """User-facing reply for an error that escaped a handler."""
    if isinstance(exc, (InvalidInputError, ResolutionError)):
        return Reply.text(f"❌ {exc}")
    if isinstance(exc, ExhaustedSupplyError):
        return Reply.text(f"❌ No claim links remain for event {exc.event_id}.")
    if isinstance(exc, (IssuanceAPIError, BadgeLookupError)):
        return Reply.text(SERVICE_UNAVAILABLE)
    if isinstance(exc, StoreError):
        return Reply.text("❌ Something went wrong saving your request. Please try again later.")
    return Reply.text(GENERIC_FAILURE)


def parse_target(raw: str | None) -> int | None:
    """Role/channel/user mention or bare snowflake → id."""
    if raw is None:
        return None
    value = str(raw).strip()
    if value.isdigit():
        return int(value)
    match = _MENTION_RE.match(value)
    return int(match.group(1)) if match else None


def parse_event_ids(raw: str | None) -> list[int] | None:
    """``"1001, 1002"`` → ``[1001, 1002]``; ``None`` if anything isn't a number."""
    if not raw:
        return None
    parts = [p.strip() for p in str(raw).split(",") if p.strip()]
    if not parts or not all(p.isdigit() for p in parts):
        return None
    return list(dict.fromkeys(int(p) for p in parts))


def _int_option(invocation: CommandInvocation, name: str) -> int | None:
    value = invocation.option(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"`{name}` must be a number.") from exc


# ---------------------------------------------------------------------------
# link-wallet
# ---------------------------------------------------------------------------
async def link_wallet(inv: CommandInvocation, svc: CommandServices, sink: ResponseSink) -> None:
    await sink.deferred_acknowledge(ephemeral=True)

    resolved = await svc.resolver.resolve(inv.option("address") or "")
    await run_db(svc.store.link_wallet, inv.user_id, resolved.address)

    await sink.respond(Reply.embed(
        embeds.build_wallet_linked_embed(
            resolved.address, resolved.display_name, resolved.was_name_lookup
        ),
        ephemeral=True,
    ))

    if inv.community_id is not None:
        await svc.bus.publish(WalletLinked(
            community_id=inv.community_id, user_id=inv.user_id, address=resolved.address,
        ))


# ---------------------------------------------------------------------------
# my-badges
# ---------------------------------------------------------------------------
async def my_badges(inv: CommandInvocation, svc: CommandServices, sink: ResponseSink) -> None:
    await sink.deferred_acknowledge()

    raw = inv.option("address")
    if raw:
        resolved = await svc.resolver.resolve(raw)
        address, display = resolved.address, resolved.display_name
    else:
        link = await run_db(svc.store.get_wallet_link, inv.user_id)
        if link is None:
            await sink.respond(Reply.text(
                "❌ You haven't linked a wallet yet. Use `/link-wallet` or provide an address.\n\n"
                "Example: `/my-badges address:vitalik.eth`"
            ))
            return
        address = link.address
        display = await svc.resolver.display_name(address)

    badges = await svc.issuance.get_user_badges(address)
    if not badges:
        await sink.respond(Reply.embed(embeds.build_empty_collection_embed(address, display)))
        return

    await sink.respond(Reply.embed(
        embeds.build_collection_embed(address, display, badges),
        link=LinkButton(
            label="View Full Collection",
            url=f"{svc.cfg.collection_url.rstrip('/')}/{address}",
            emoji="\U0001f517",
        ),
    ))


# ---------------------------------------------------------------------------
# badge-info
# ---------------------------------------------------------------------------
async def badge_info(inv: CommandInvocation, svc: CommandServices, sink: ResponseSink) -> None:
    event_id = _int_option(inv, "event-id")
    if event_id is None:
        await sink.respond(Reply.text("❌ Please provide an event ID."))
        return

    await sink.deferred_acknowledge()
    try:
        event = await svc.catalog.get_event(event_id)
    except IssuanceAPIError as exc:
        if exc.not_found:
            await sink.respond(Reply.text(
                f"❌ Event with ID {event_id} not found. Please check the event ID."
            ))
            return
        await sink.respond(Reply.text(
            f"❌ Failed to fetch information for event {event_id}. Please try again later."
        ))
        return

    minted = await svc.issuance.count_minted(event_id)
    await sink.respond(Reply.embed(embeds.build_event_embed(event_id, event, minted)))


# ---------------------------------------------------------------------------
# distribute-badge
# ---------------------------------------------------------------------------
async def distribute_badge(inv: CommandInvocation, svc: CommandServices, sink: ResponseSink) -> None:
    recipient_id = parse_target(inv.option("user"))
    event_id = _int_option(inv, "event-id")
    secret_code = inv.option("secret-code")
    if recipient_id is None or event_id is None or not secret_code:
        await sink.respond(Reply.text("❌ Please provide a user, an event ID and a secret code."))
        return

    await sink.deferred_acknowledge(ephemeral=True)

    link = await run_db(svc.store.get_wallet_link, recipient_id)
    if link is None:
        await sink.respond(Reply.text(
            f"❌ <@{recipient_id}> hasn't linked their wallet yet. "
            "They need to use `/link-wallet` first."
        ))
        return

    try:
        event = await svc.catalog.get_event(event_id)
    except IssuanceAPIError:
        await sink.respond(Reply.text(
            f"❌ Failed to fetch event information. Please check the event ID: {event_id}"
        ))
        return

    try:
        attempt = await svc.distributor.issue(
            community_id=inv.community_id,
            user_id=recipient_id,
            address=link.address,
            event_id=event_id,
            secret_code=secret_code,
            distributed_by=str(inv.user_id),
        )
    except ExhaustedSupplyError:
        await sink.respond(Reply.text(
            f"❌ No available mint links for event {event_id}. "
            "Check the secret code or contact the event organizer."
        ))
        return
    except IssuanceAPIError:
        await sink.respond(Reply.text(
            f"❌ Failed to get mint links. Please verify the secret code for event {event_id}."
        ))
        return

    await run_db(
        svc.store.record_admin_action,
        community_id=inv.community_id,
        actor_id=inv.user_id,
        action_type="DISTRIBUTE",
        target_table="distribution_records",
        target_id=str(attempt.record.id),
        after={
            "user_id": recipient_id,
            "event_id": event_id,
            "address": link.address,
            "status": attempt.record.status,
        },
    )

    if not attempt.claimed:
        await sink.respond(Reply.text(
            "❌ Failed to claim POAP. The mint link might already be used or there was an API error."
        ))
        return

    await sink.respond(Reply.embed(
        embeds.build_distributed_embed(recipient_id, link.address, event_id, event, attempt.tx_hash),
        ephemeral=True,
    ))

    if svc.platform is not None:
        dm = embeds.build_received_embed(
            inv.community_name or svc.cfg.community_name, event, inv.user_id, link.address
        )
        try:
            await svc.platform.send_direct_message(recipient_id, embed=dm.to_dict())
        except Exception as exc:
            logger.info("Could not DM user %d: %s", recipient_id, exc)


# ---------------------------------------------------------------------------
# access-gate
# ---------------------------------------------------------------------------
async def access_gate(inv: CommandInvocation, svc: CommandServices, sink: ResponseSink) -> None:
    action = str(inv.option("action") or "").replace("_", "-")

    if action in ("create-role", "create-channel"):
        await _create_gate(inv, svc, sink, GateType.ROLE if action == "create-role" else GateType.CHANNEL)
    elif action == "list":
        await sink.deferred_acknowledge(ephemeral=True)
        gates = await run_db(svc.store.list_gates, inv.community_id)
        if not gates:
            await sink.respond(Reply.text("\U0001f4ed No POAP gates configured for this server."))
            return
        await sink.respond(Reply.embed(embeds.build_gate_list_embed(gates), ephemeral=True))
    elif action == "remove":
        gate_id = _int_option(inv, "gate-id")
        if gate_id is None:
            await sink.respond(Reply.text("❌ Please provide the gate ID to remove."))
            return
        removed = await run_db(
            svc.store.delete_gate, gate_id, actor_id=inv.user_id, community_id=inv.community_id
        )
        if not removed:
            await sink.respond(Reply.text(f"❌ Failed to remove gate {gate_id}. Please check the gate ID."))
            return
        await sink.respond(Reply.embed(embeds.build_gate_removed_embed(gate_id), ephemeral=True))
    else:
        await sink.respond(Reply.text("❌ Invalid action specified."))


async def _create_gate(
    inv: CommandInvocation, svc: CommandServices, sink: ResponseSink, kind: GateType
) -> None:
    noun = "role" if kind is GateType.ROLE else "channel"
    raw_target = inv.option("target")
    raw_ids = inv.option("badge-ids")
    if not raw_target or not raw_ids:
        await sink.respond(Reply.text(
            f"❌ Please provide both target {noun} and POAP IDs for {noun} gate creation."
        ))
        return

    target_id = parse_target(raw_target)
    if target_id is None:
        await sink.respond(Reply.text(
            f'❌ {noun.capitalize()} "{raw_target}" not found. Please mention the {noun} or use its ID.'
        ))
        return

    event_ids = parse_event_ids(raw_ids)
    if event_ids is None:
        await sink.respond(Reply.text("❌ Please provide valid POAP IDs (comma-separated numbers)."))
        return

    await sink.deferred_acknowledge(ephemeral=True)

    named: list[tuple[int, str]] = []
    for event_id in event_ids:
        try:
            event = await svc.catalog.get_event(event_id)
        except IssuanceAPIError as exc:
            if exc.not_found:
                await sink.respond(Reply.text(
                    f"❌ POAP event {event_id} not found. Please check all event IDs."
                ))
                return
            raise
        named.append((event_id, event.get("name") or f"Event #{event_id}"))

    gate = await run_db(
        svc.store.create_gate,
        community_id=inv.community_id,
        gate_type=kind.value,
        target_id=target_id,
        required_event_ids=event_ids,
        created_by=inv.user_id,
    )
    await sink.respond(Reply.embed(embeds.build_gate_created_embed(gate, named), ephemeral=True))


# ---------------------------------------------------------------------------
# auto-distribute
# ---------------------------------------------------------------------------
async def auto_distribute(inv: CommandInvocation, svc: CommandServices, sink: ResponseSink) -> None:
    action = str(inv.option("action") or "")

    if action == "create":
        await _create_rule(inv, svc, sink)
    elif action == "list":
        await sink.deferred_acknowledge(ephemeral=True)
        rules = await run_db(svc.store.list_rules, inv.community_id)
        if not rules:
            await sink.respond(Reply.text("\U0001f4ed No auto-distribution rules configured for this server."))
            return
        await sink.respond(Reply.embed(embeds.build_rule_list_embed(rules), ephemeral=True))
    elif action == "toggle":
        rule_id = _int_option(inv, "rule-id")
        if rule_id is None:
            await sink.respond(Reply.text("❌ Please provide the rule ID to toggle."))
            return
        rule = await run_db(svc.store.get_rule, rule_id)
        if rule is None or rule.community_id != inv.community_id:
            await sink.respond(Reply.text(f"❌ Rule {rule_id} not found in this server."))
            return
        updated = await run_db(
            svc.store.set_rule_active,
            rule_id,
            not rule.active,
            actor_id=inv.user_id,
            community_id=inv.community_id,
        )
        if updated is None:
            await sink.respond(Reply.text(f"❌ Failed to toggle rule {rule_id}. Please check the rule ID."))
            return
        await sink.respond(Reply.embed(embeds.build_rule_toggled_embed(updated), ephemeral=True))
    else:
        await sink.respond(Reply.text("❌ Invalid action specified."))


async def _create_rule(inv: CommandInvocation, svc: CommandServices, sink: ResponseSink) -> None:
    trigger = inv.option("trigger")
    event_id = _int_option(inv, "event-id")
    secret_code = inv.option("secret-code")
    if not trigger or event_id is None or not secret_code:
        await sink.respond(Reply.text(
            "❌ Please provide trigger type, event ID, and secret code to create a rule."
        ))
        return
    try:
        trigger_type = TriggerType(str(trigger).replace("-", "_"))
    except ValueError:
        await sink.respond(Reply.text(f"❌ Unknown trigger `{trigger}`."))
        return

    await sink.deferred_acknowledge(ephemeral=True)
    try:
        event = await svc.catalog.get_event(event_id)
    except IssuanceAPIError as exc:
        if exc.not_found:
            await sink.respond(Reply.text(f"❌ Event {event_id} not found. Please check the event ID."))
            return
        raise

    rule = await run_db(
        svc.store.create_rule,
        community_id=inv.community_id,
        event_id=event_id,
        trigger_type=trigger_type.value,
        secret_code=secret_code,
        created_by=inv.user_id,
    )
    await sink.respond(Reply.embed(
        embeds.build_rule_created_embed(rule, event.get("name") or f"Event #{event_id}"),
        ephemeral=True,
    ))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
_ADDRESS_HELP = "Wallet address (0x...) or name (vitalik.eth)"


def build_registry() -> CommandRegistry:
    return CommandRegistry([
        CommandSpec(
            name="link-wallet",
            description="Link your wallet to receive POAPs",
            handler=link_wallet,
            ephemeral=True,
            options=(OptionSpec("address", _ADDRESS_HELP, required=True),),
        ),
        CommandSpec(
            name="my-badges",
            description="View a POAP collection",
            handler=my_badges,
            options=(OptionSpec("address", f"{_ADDRESS_HELP} to check (optional)"),),
        ),
        CommandSpec(
            name="badge-info",
            description="Get information about a POAP event",
            handler=badge_info,
            options=(OptionSpec("event-id", "POAP event ID", OptionType.INTEGER, required=True),),
        ),
        CommandSpec(
            name="distribute-badge",
            description="Distribute a POAP to a member (Admin only)",
            handler=distribute_badge,
            admin=True,
            ephemeral=True,
            options=(
                OptionSpec("user", "Member to receive the POAP", OptionType.USER, required=True),
                OptionSpec("event-id", "POAP event ID", OptionType.INTEGER, required=True),
                OptionSpec("secret-code", "Event secret code", required=True),
            ),
        ),
        CommandSpec(
            name="access-gate",
            description="Manage POAP-based access control (Admin only)",
            handler=access_gate,
            admin=True,
            ephemeral=True,
            options=(
                OptionSpec(
                    "action", "Action to perform", required=True,
                    choices=(
                        ("create-role-gate", "create-role"),
                        ("create-channel-gate", "create-channel"),
                        ("list-gates", "list"),
                        ("remove-gate", "remove"),
                    ),
                ),
                OptionSpec("target", "Role or channel to gate (mention or ID)"),
                OptionSpec("badge-ids", "Required POAP event IDs (comma-separated)"),
                OptionSpec("gate-id", "Gate ID to remove", OptionType.INTEGER),
            ),
        ),
        CommandSpec(
            name="auto-distribute",
            description="Set up automatic POAP distribution (Admin only)",
            handler=auto_distribute,
            admin=True,
            ephemeral=True,
            options=(
                OptionSpec(
                    "action", "Action to perform", required=True,
                    choices=(
                        ("create-rule", "create"),
                        ("list-rules", "list"),
                        ("toggle-rule", "toggle"),
                    ),
                ),
                OptionSpec(
                    "trigger", "Distribution trigger",
                    choices=(
                        ("member-join", TriggerType.MEMBER_JOIN.value),
                        ("reaction-add", TriggerType.REACTION_ADD.value),
                        ("message-sent", TriggerType.MESSAGE_SENT.value),
                    ),
                ),
                OptionSpec("event-id", "POAP event ID", OptionType.INTEGER),
                OptionSpec("secret-code", "Event secret code"),
                OptionSpec("rule-id", "Rule ID to toggle", OptionType.INTEGER),
            ),
        ),
    ])


