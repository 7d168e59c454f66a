"""
tests/test_rules.py — Rule Engine
==================================

Trigger evaluation against a real store (SQLite) and the fake issuance
service.  The concurrency test uses a file-backed database so the two
evaluations get separate connections, as they would in production.
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import ADMIN_ID, COMMUNITY_ID, USER_ID, VITALIK_ADDRESS, FakeIssuance, FakePlatform, run_async
from sqlalchemy import create_engine

from poapbot.database.models import Base, DistributionStatus, TriggerType
from poapbot.engine.events import EventBus, TriggerEvent
from poapbot.engine.rules import OutcomeStatus, RuleEngine, matches_trigger_data
from poapbot.services.catalog import EventCatalog
from poapbot.services.distribution import BadgeDistributor
from poapbot.services.store import EntitlementStore


def _rule(store, *, event_id=42, trigger=TriggerType.MEMBER_JOIN, trigger_data=None):
    return store.create_rule(
        community_id=COMMUNITY_ID,
        event_id=event_id,
        trigger_type=trigger,
        secret_code="abc",
        created_by=ADMIN_ID,
        trigger_data=trigger_data,
    )


def _engine(store, issuance, platform=None) -> RuleEngine:
    return RuleEngine(
        store,
        BadgeDistributor(store, issuance),
        platform=platform,
        catalog=EventCatalog(store, issuance),
    )


# ===========================================================================
# trigger_data filter
# ===========================================================================
class TestTriggerFilter:
    def test_no_filter_matches_everything(self):
        assert matches_trigger_data(None, {})
        assert matches_trigger_data({}, {"channel_id": 1})

    def test_values_compare_as_strings(self):
        assert matches_trigger_data({"channel_id": "555"}, {"channel_id": 555})

    def test_mismatch_and_missing_key(self):
        assert not matches_trigger_data({"channel_id": 555}, {"channel_id": 556})
        assert not matches_trigger_data({"emoji": "⭐"}, {"channel_id": 1})


# ===========================================================================
# Evaluation
# ===========================================================================
class TestOnTrigger:
    def test_no_rules(self, store, issuance):
        assert run_async(_engine(store, issuance).on_trigger(COMMUNITY_ID, "member_join", USER_ID)) == []
        assert issuance.calls == []

    def test_unlinked_user_is_skipped(self, store, issuance):
        rule = _rule(store)
        issuance.links[42] = ["tok"]
        (outcome,) = run_async(_engine(store, issuance).on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        assert outcome.status == OutcomeStatus.SKIPPED_UNLINKED
        assert outcome.rule_id == rule.id
        assert issuance.calls == []

    def test_issued(self, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store)
        issuance.links[42] = ["tok"]
        (outcome,) = run_async(_engine(store, issuance).on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        assert outcome.status == OutcomeStatus.ISSUED
        assert issuance.claims == [("tok", VITALIK_ADDRESS.lower())]

        (record,) = store.list_distributions(user_id=USER_ID)
        assert record.id == outcome.distribution_id
        assert record.status == DistributionStatus.CLAIMED
        assert record.distributed_by == "automation"
        assert record.tx_hash == "0xtx1"

    def test_exhausted_supply_records_nothing(self, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store)
        (outcome,) = run_async(_engine(store, issuance).on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        assert outcome.status == OutcomeStatus.SKIPPED_EXHAUSTED
        assert store.list_distributions(user_id=USER_ID) == []

    def test_failed_claim_is_recorded_and_not_retried(self, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store)
        issuance.links[42] = ["tok"]
        issuance.fail_claims = True
        (outcome,) = run_async(_engine(store, issuance).on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        assert outcome.status == OutcomeStatus.FAILED
        assert issuance.calls.count("claim") == 1

        (record,) = store.list_distributions(user_id=USER_ID)
        assert record.status == DistributionStatus.FAILED
        assert "link already used" in record.failure_reason

    def test_retrigger_after_failure(self, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store)
        issuance.links[42] = ["tok"]
        issuance.fail_claims = True
        engine = _engine(store, issuance)
        run_async(engine.on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        issuance.fail_claims = False
        (outcome,) = run_async(engine.on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        assert outcome.status == OutcomeStatus.ISSUED

    def test_second_trigger_is_a_duplicate(self, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store)
        issuance.links[42] = ["tok-1", "tok-2"]
        engine = _engine(store, issuance)
        run_async(engine.on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        (outcome,) = run_async(engine.on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        assert outcome.status == OutcomeStatus.SKIPPED_DUPLICATE
        assert len(issuance.claims) == 1

    def test_repeat_triggers_make_no_issuance_calls(self, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store)
        issuance.links[42] = ["tok-1", "tok-2"]
        engine = _engine(store, issuance)
        (first,) = run_async(engine.on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        issuance.calls.clear()

        for _ in range(3):
            (outcome,) = run_async(engine.on_trigger(COMMUNITY_ID, "member_join", USER_ID))
            assert outcome.status == OutcomeStatus.SKIPPED_DUPLICATE
            assert outcome.distribution_id == first.distribution_id
        assert issuance.calls == []

    def test_token_held_by_another_user_moves_to_next_link(self, store, issuance):
        store.open_distribution(
            user_id=USER_ID + 1, community_id=COMMUNITY_ID, event_id=42,
            claim_token="tok-1", distributed_by=str(ADMIN_ID),
        )
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store)
        issuance.links[42] = ["tok-1", "tok-2"]

        (outcome,) = run_async(_engine(store, issuance).on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        assert outcome.status == OutcomeStatus.ISSUED
        assert issuance.claims == [("tok-2", VITALIK_ADDRESS.lower())]

    def test_stale_pending_token_does_not_block_other_members(self, store, issuance):
        rule = _rule(store)
        store.open_distribution(
            user_id=USER_ID + 1, community_id=COMMUNITY_ID, event_id=42,
            claim_token="tok-1", distributed_by="automation", rule_id=rule.id,
        )
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.links[42] = ["tok-1", "tok-2"]

        (outcome,) = run_async(_engine(store, issuance).on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        assert outcome.status == OutcomeStatus.ISSUED
        assert issuance.claims == [("tok-2", VITALIK_ADDRESS.lower())]

    def test_every_link_held_elsewhere_is_exhausted(self, store, issuance):
        store.open_distribution(
            user_id=USER_ID + 1, community_id=COMMUNITY_ID, event_id=42,
            claim_token="tok-1", distributed_by=str(ADMIN_ID),
        )
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store)
        issuance.links[42] = ["tok-1"]

        (outcome,) = run_async(_engine(store, issuance).on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        assert outcome.status == OutcomeStatus.SKIPPED_EXHAUSTED
        assert issuance.claims == []

    def test_filtered_rule(self, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store, trigger=TriggerType.MESSAGE_SENT, trigger_data={"channel_id": 555})
        issuance.links[42] = ["tok"]
        engine = _engine(store, issuance)

        (skipped,) = run_async(engine.on_trigger(COMMUNITY_ID, "message_sent", USER_ID, {"channel_id": 556}))
        assert skipped.status == OutcomeStatus.SKIPPED_FILTERED
        (issued,) = run_async(engine.on_trigger(COMMUNITY_ID, "message_sent", USER_ID, {"channel_id": 555}))
        assert issued.status == OutcomeStatus.ISSUED

    def test_inactive_rules_are_ignored(self, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        rule = _rule(store)
        store.set_rule_active(rule.id, False, actor_id=ADMIN_ID, community_id=COMMUNITY_ID)
        issuance.links[42] = ["tok"]
        assert run_async(_engine(store, issuance).on_trigger(COMMUNITY_ID, "member_join", USER_ID)) == []

    def test_one_rule_failing_does_not_block_another(self, store):
        class Flaky(FakeIssuance):
            async def get_claim_links(self, event_id, secret_code):
                if event_id == 13:
                    raise RuntimeError("unexpected")
                return await super().get_claim_links(event_id, secret_code)

        issuance = Flaky()
        issuance.links[42] = ["tok"]
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        broken = _rule(store, event_id=13)
        healthy = _rule(store, event_id=42)

        outcomes = run_async(_engine(store, issuance).on_trigger(COMMUNITY_ID, "member_join", USER_ID))
        by_rule = {o.rule_id: o.status for o in outcomes}
        assert by_rule == {broken.id: OutcomeStatus.FAILED, healthy.id: OutcomeStatus.ISSUED}

    def test_unknown_trigger_type(self, store, issuance):
        with pytest.raises(ValueError):
            run_async(_engine(store, issuance).on_trigger(COMMUNITY_ID, "voice_join", USER_ID))


# ===========================================================================
# Notification
# ===========================================================================
class TestNotify:
    def test_welcome_dm_on_member_join(self, store, issuance):
        platform = FakePlatform()
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store)
        issuance.links[42] = ["tok"]
        issuance.add_event(42, "Community Launch")

        run_async(_engine(store, issuance, platform).on_trigger(
            COMMUNITY_ID, "member_join", USER_ID, {"community_name": "POAP Dev"}
        ))
        ((user_id, content, _),) = platform.dms
        assert user_id == USER_ID
        assert "Welcome to **POAP Dev**" in content
        assert "Community Launch" in content

    def test_dm_failure_does_not_fail_the_rule(self, store, issuance):
        class Closed(FakePlatform):
            async def send_direct_message(self, user_id, content=None, *, embed=None):
                raise RuntimeError("Cannot send messages to this user")

        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store, trigger=TriggerType.REACTION_ADD)
        issuance.links[42] = ["tok"]
        (outcome,) = run_async(_engine(store, issuance, Closed()).on_trigger(
            COMMUNITY_ID, "reaction_add", USER_ID, {"emoji": "⭐"}
        ))
        assert outcome.status == OutcomeStatus.ISSUED


# ===========================================================================
# Bus entry point
# ===========================================================================
class TestBusIntegration:
    def test_published_trigger_reaches_the_engine(self, store, issuance):
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store)
        issuance.links[42] = ["tok"]
        bus = EventBus()
        bus.subscribe(TriggerEvent, _engine(store, issuance).handle_event)

        run_async(bus.publish(TriggerEvent(
            community_id=COMMUNITY_ID, trigger_type=TriggerType.MEMBER_JOIN, user_id=USER_ID,
        )))
        assert len(issuance.claims) == 1


# ===========================================================================
# At most one claim per rule and user under concurrency
# ===========================================================================
class TestConcurrentTriggers:
    def test_double_trigger_claims_once(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'rules.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(engine)
        store = EntitlementStore(engine)
        issuance = FakeIssuance()
        issuance.links[42] = ["only-link"]
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        _rule(store)
        rules = _engine(store, issuance)

        async def _inner():
            return await asyncio.gather(
                rules.on_trigger(COMMUNITY_ID, "member_join", USER_ID),
                rules.on_trigger(COMMUNITY_ID, "member_join", USER_ID),
            )

        first, second = run_async(_inner())
        statuses = sorted(o.status for o in first + second)
        assert statuses == sorted([OutcomeStatus.ISSUED, OutcomeStatus.SKIPPED_DUPLICATE])
        assert len(issuance.claims) == 1

        claimed = [
            r for r in store.list_distributions(user_id=USER_ID)
            if r.status == DistributionStatus.CLAIMED
        ]
        assert len(claimed) == 1
        engine.dispose()
