"""
tests/test_commands.py — Slash Command Handlers
================================================

Handlers run through the real :class:`CommandDispatcher` and registry with
a SQLite store, fake issuance/name services and a recording sink.
"""

from __future__ import annotations

from conftest import ADMIN_ID, COMMUNITY_ID, USER_ID, VITALIK_ADDRESS, RecordingSink, run_async
from sqlalchemy import select
from sqlalchemy.orm import Session

from poapbot.constants import PERMISSION_MANAGE_GUILD
from poapbot.database.models import AdminLog, DistributionStatus, GateType
from poapbot.engine.gates import GateReconciler
from poapbot.gateway.commands import build_registry, parse_event_ids, parse_target
from poapbot.gateway.interactions import CommandDispatcher
from poapbot.gateway.registry import CommandInvocation, CommandOption


def invoke(services, name: str, *, admin: bool = False, user_id: int = USER_ID, **options) -> RecordingSink:
    inv = CommandInvocation(
        name=name,
        user_id=ADMIN_ID if admin else user_id,
        community_id=COMMUNITY_ID,
        options=tuple(
            CommandOption(name=key.replace("_", "-"), value=value)
            for key, value in options.items()
        ),
        permissions=PERMISSION_MANAGE_GUILD if admin else 0,
        community_name="POAP Dev",
    )
    sink = RecordingSink()
    run_async(CommandDispatcher(build_registry(), services).run_command(inv, sink))
    return sink


def embed_of(sink: RecordingSink) -> dict:
    (embed,) = sink.last.embeds
    return embed.to_dict()


# ===========================================================================
# Parsing helpers
# ===========================================================================
class TestParsing:
    def test_parse_target(self):
        assert parse_target("<@&555>") == 555
        assert parse_target("<#777>") == 777
        assert parse_target("<@!1001>") == 1001
        assert parse_target(" 123 ") == 123
        assert parse_target("@everyone") is None
        assert parse_target(None) is None

    def test_parse_event_ids(self):
        assert parse_event_ids("1001, 1002,1001") == [1001, 1002]
        assert parse_event_ids("1001, abc") is None
        assert parse_event_ids("") is None
        assert parse_event_ids(" , ") is None


# ===========================================================================
# link-wallet
# ===========================================================================
class TestLinkWallet:
    def test_name_is_resolved_and_stored_lowercase(self, services, store):
        sink = invoke(services, "link-wallet", address="vitalik.eth")
        link = store.get_wallet_link(USER_ID)
        assert link.address == VITALIK_ADDRESS.lower()
        assert link.verified is False
        assert sink.deferred is True
        assert sink.last.ephemeral
        assert embed_of(sink)["title"].endswith("Wallet Linked Successfully!")

    def test_invalid_input(self, services, store):
        sink = invoke(services, "link-wallet", address="hello")
        assert sink.last.content.startswith("❌")
        assert store.get_wallet_link(USER_ID) is None

    def test_unresolvable_name(self, services, store):
        sink = invoke(services, "link-wallet", address="nobody.eth")
        assert "address directly" in sink.last.content
        assert store.get_wallet_link(USER_ID) is None

    def test_linking_reconciles_gates(self, services, store, issuance, platform):
        store.create_gate(
            community_id=COMMUNITY_ID, gate_type="role", target_id=555,
            required_event_ids=[1001], created_by=ADMIN_ID,
        )
        issuance.give_badges(VITALIK_ADDRESS, 1001)
        invoke(services, "link-wallet", address=VITALIK_ADDRESS)
        assert (COMMUNITY_ID, USER_ID, 555) in platform.roles


# ===========================================================================
# my-badges
# ===========================================================================
class TestMyBadges:
    def test_without_link(self, services):
        sink = invoke(services, "my-badges")
        assert "/link-wallet" in sink.last.content

    def test_linked_wallet_collection(self, services, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.give_badges(VITALIK_ADDRESS, *range(1, 13))
        sink = invoke(services, "my-badges")
        embed = embed_of(sink)
        assert "**12**" in embed["description"]
        assert embed["footer"]["text"] == "Latest 10 of 12 POAPs"
        assert sink.last.link.url == f"https://collectors.poap.xyz/scan/{VITALIK_ADDRESS.lower()}"

    def test_empty_collection_for_address(self, services):
        sink = invoke(services, "my-badges", address="0x" + "b" * 40)
        assert embed_of(sink)["title"].endswith("No POAPs Found")


# ===========================================================================
# badge-info
# ===========================================================================
class TestBadgeInfo:
    def test_event_found(self, services, issuance):
        issuance.add_event(42, "Party", description="A party", city="Lisbon")
        issuance.minted = 17
        embed = embed_of(invoke(services, "badge-info", event_id=42))
        assert embed["title"].endswith("Party")
        assert embed["description"] == "A party"

    def test_event_not_found(self, services):
        sink = invoke(services, "badge-info", event_id=404)
        assert "not found" in sink.last.content

    def test_cached_after_first_call(self, services, issuance):
        issuance.add_event(42, "Party")
        invoke(services, "badge-info", event_id=42)
        invoke(services, "badge-info", event_id=42)
        assert issuance.calls.count("get_event") == 1


# ===========================================================================
# distribute-badge
# ===========================================================================
class TestDistributeBadge:
    def test_member_cannot_distribute(self, services, issuance):
        sink = invoke(services, "distribute-badge", user=str(USER_ID), event_id=42, secret_code="abc")
        assert "Manage Server" in sink.last.content
        assert issuance.calls == []

    def test_recipient_not_linked(self, services):
        sink = invoke(services, "distribute-badge", admin=True, user=f"<@{USER_ID}>", event_id=42, secret_code="abc")
        assert "hasn't linked their wallet" in sink.last.content

    def test_success(self, services, store, issuance, platform, db_engine):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.add_event(42, "Party")
        issuance.links[42] = ["tok"]

        sink = invoke(services, "distribute-badge", admin=True, user=str(USER_ID), event_id=42, secret_code="abc")
        assert embed_of(sink)["title"].endswith("POAP Distributed Successfully!")

        (record,) = store.list_distributions(user_id=USER_ID)
        assert record.status == DistributionStatus.CLAIMED
        assert record.distributed_by == str(ADMIN_ID)
        assert record.rule_id is None

        ((dm_user, _, dm_embed),) = platform.dms
        assert dm_user == USER_ID
        assert dm_embed["title"].endswith("You received a POAP!")

        with Session(db_engine) as session:
            (audit,) = session.scalars(select(AdminLog).where(AdminLog.action_type == "DISTRIBUTE"))
        assert audit.actor_id == ADMIN_ID
        assert audit.target_id == str(record.id)

    def test_exhausted(self, services, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.add_event(42, "Party")
        sink = invoke(services, "distribute-badge", admin=True, user=str(USER_ID), event_id=42, secret_code="abc")
        assert "No available mint links" in sink.last.content

    def test_failed_claim(self, services, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.add_event(42, "Party")
        issuance.links[42] = ["tok"]
        issuance.fail_claims = True
        sink = invoke(services, "distribute-badge", admin=True, user=str(USER_ID), event_id=42, secret_code="abc")
        assert "Failed to claim POAP" in sink.last.content
        (record,) = store.list_distributions(user_id=USER_ID)
        assert record.status == DistributionStatus.FAILED


# ===========================================================================
# access-gate
# ===========================================================================
class TestAccessGate:
    def test_create_role_gate(self, services, store, issuance):
        issuance.add_event(1001, "ETHDenver")
        issuance.add_event(1002, "Devcon")
        sink = invoke(services, "access-gate", admin=True, action="create-role", target="<@&555>", badge_ids="1001, 1002")
        assert embed_of(sink)["title"].endswith("Role Gate Created")

        (gate,) = store.list_gates(COMMUNITY_ID)
        assert gate.gate_type == GateType.ROLE
        assert gate.role_id == 555
        assert gate.required_set == {1001, 1002}

    def test_gate_scenario(self, services, store, issuance, platform):
        issuance.add_event(1001, "ETHDenver")
        issuance.add_event(1002, "Devcon")
        invoke(services, "access-gate", admin=True, action="create-role", target="555", badge_ids="1001,1002")

        holder, newcomer = 2001, 2002
        store.link_wallet(holder, "0x" + "1" * 40)
        store.link_wallet(newcomer, "0x" + "2" * 40)
        issuance.give_badges("0x" + "1" * 40, 1001, 1002, 1003)
        issuance.give_badges("0x" + "2" * 40, 1001)

        reconciler = GateReconciler(store, issuance, platform)
        (action,) = run_async(reconciler.reconcile(COMMUNITY_ID, holder))
        assert action.target_id == 555
        assert run_async(reconciler.reconcile(COMMUNITY_ID, newcomer)) == []

    def test_unknown_event_creates_nothing(self, services, store, issuance):
        issuance.add_event(1001, "ETHDenver")
        sink = invoke(services, "access-gate", admin=True, action="create-channel", target="<#777>", badge_ids="1001,9999")
        assert "9999 not found" in sink.last.content
        assert store.list_gates(COMMUNITY_ID) == []

    def test_bad_ids(self, services, store):
        sink = invoke(services, "access-gate", admin=True, action="create-role", target="555", badge_ids="a,b")
        assert "comma-separated" in sink.last.content

    def test_missing_target(self, services):
        sink = invoke(services, "access-gate", admin=True, action="create-role", badge_ids="1")
        assert "Please provide both" in sink.last.content

    def test_list_and_remove(self, services, store):
        gate = store.create_gate(
            community_id=COMMUNITY_ID, gate_type="channel", target_id=777,
            required_event_ids=[1], created_by=ADMIN_ID,
        )
        listed = embed_of(invoke(services, "access-gate", admin=True, action="list"))
        assert f"ID {gate.id}" in listed["fields"][0]["value"]

        removed = invoke(services, "access-gate", admin=True, action="remove", gate_id=gate.id)
        assert embed_of(removed)["title"].endswith("Gate Removed")
        assert store.list_gates(COMMUNITY_ID) == []

        empty = invoke(services, "access-gate", admin=True, action="list")
        assert "No POAP gates" in empty.last.content

    def test_remove_unknown(self, services):
        sink = invoke(services, "access-gate", admin=True, action="remove", gate_id=12345)
        assert "Failed to remove gate 12345" in sink.last.content


# ===========================================================================
# auto-distribute
# ===========================================================================
class TestAutoDistribute:
    def test_create_then_list(self, services, store, issuance):
        issuance.add_event(42, "Launch")
        sink = invoke(services, "auto-distribute", admin=True, action="create",
                      trigger="member_join", event_id=42, secret_code="abc")
        assert embed_of(sink)["title"].endswith("Auto-Distribution Rule Created")

        (rule,) = store.list_rules(COMMUNITY_ID)
        assert rule.trigger_type == "member_join"
        assert rule.event_id == 42
        assert rule.active is True

        listed = embed_of(invoke(services, "auto-distribute", admin=True, action="list"))
        assert listed["description"] == "1 rule(s) configured for this server"
        assert f"ID {rule.id}" in listed["fields"][0]["value"]

    def test_create_requires_all_fields(self, services, store):
        sink = invoke(services, "auto-distribute", admin=True, action="create", trigger="member_join")
        assert "Please provide trigger type" in sink.last.content
        assert store.list_rules(COMMUNITY_ID) == []

    def test_create_unknown_event(self, services, store):
        sink = invoke(services, "auto-distribute", admin=True, action="create",
                      trigger="member_join", event_id=7, secret_code="abc")
        assert "Event 7 not found" in sink.last.content
        assert store.list_rules(COMMUNITY_ID) == []

    def test_toggle(self, services, store, issuance):
        issuance.add_event(42, "Launch")
        invoke(services, "auto-distribute", admin=True, action="create",
               trigger="reaction_add", event_id=42, secret_code="abc")
        (rule,) = store.list_rules(COMMUNITY_ID)

        sink = invoke(services, "auto-distribute", admin=True, action="toggle", rule_id=rule.id)
        assert "disabled" in embed_of(sink)["description"]
        assert store.get_rule(rule.id).active is False

        invoke(services, "auto-distribute", admin=True, action="toggle", rule_id=rule.id)
        assert store.get_rule(rule.id).active is True

    def test_toggle_unknown_rule(self, services):
        sink = invoke(services, "auto-distribute", admin=True, action="toggle", rule_id=99)
        assert "Rule 99 not found" in sink.last.content

    def test_empty_list(self, services):
        sink = invoke(services, "auto-distribute", admin=True, action="list")
        assert "No auto-distribution rules" in sink.last.content
