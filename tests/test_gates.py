"""
tests/test_gates.py — Gate Reconciler
======================================
"""

from __future__ import annotations

import pytest
from conftest import ADMIN_ID, COMMUNITY_ID, USER_ID, VITALIK_ADDRESS, run_async

from poapbot.database.models import GateType, TriggerType
from poapbot.engine.events import TriggerEvent, WalletLinked
from poapbot.engine.gates import GateReconciler, evaluate_gates
from poapbot.exceptions import BadgeLookupError

ROLE_ID = 555
CHANNEL_ID = 777


def _gate(store, gate_type=GateType.ROLE, target_id=ROLE_ID, required=(1001, 1002)):
    return store.create_gate(
        community_id=COMMUNITY_ID,
        gate_type=gate_type,
        target_id=target_id,
        required_event_ids=list(required),
        created_by=ADMIN_ID,
    )


class TestEvaluateGates:
    def test_superset_matches(self, store):
        gate = _gate(store)
        assert evaluate_gates([gate], {1001, 1002, 1003}) == [gate]

    def test_partial_ownership_does_not_match(self, store):
        gate = _gate(store)
        assert evaluate_gates([gate], {1001}) == []


class TestReconcile:
    def test_no_wallet_link_is_a_noop(self, store, issuance, platform):
        _gate(store)
        assert run_async(GateReconciler(store, issuance, platform).reconcile(COMMUNITY_ID, USER_ID)) == []
        assert issuance.calls == []

    def test_role_granted_for_superset(self, store, issuance, platform):
        gate = _gate(store)
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.give_badges(VITALIK_ADDRESS, 1001, 1002, 1003)

        (action,) = run_async(GateReconciler(store, issuance, platform).reconcile(COMMUNITY_ID, USER_ID))
        assert action.gate_id == gate.id
        assert action.gate_type is GateType.ROLE
        assert action.target_id == ROLE_ID
        assert (COMMUNITY_ID, USER_ID, ROLE_ID) in platform.roles

    def test_no_grant_for_subset(self, store, issuance, platform):
        _gate(store)
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.give_badges(VITALIK_ADDRESS, 1001)
        assert run_async(GateReconciler(store, issuance, platform).reconcile(COMMUNITY_ID, USER_ID)) == []
        assert platform.roles == set()

    def test_channel_gate(self, store, issuance, platform):
        _gate(store, GateType.CHANNEL, CHANNEL_ID, required=(1001,))
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.give_badges(VITALIK_ADDRESS, 1001)
        (action,) = run_async(GateReconciler(store, issuance, platform).reconcile(COMMUNITY_ID, USER_ID))
        assert action.gate_type is GateType.CHANNEL
        assert (COMMUNITY_ID, USER_ID, CHANNEL_ID) in platform.channels

    def test_second_pass_applies_nothing(self, store, issuance, platform):
        _gate(store)
        _gate(store, GateType.CHANNEL, CHANNEL_ID, required=(1001,))
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.give_badges(VITALIK_ADDRESS, 1001, 1002)
        reconciler = GateReconciler(store, issuance, platform)

        assert len(run_async(reconciler.reconcile(COMMUNITY_ID, USER_ID))) == 2
        assert run_async(reconciler.reconcile(COMMUNITY_ID, USER_ID)) == []

    def test_existing_role_is_not_reapplied(self, store, issuance, platform):
        _gate(store)
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.give_badges(VITALIK_ADDRESS, 1001, 1002)
        platform.roles.add((COMMUNITY_ID, USER_ID, ROLE_ID))
        assert run_async(GateReconciler(store, issuance, platform).reconcile(COMMUNITY_ID, USER_ID)) == []

    def test_badge_lookup_failure_grants_nothing(self, store, issuance, platform):
        _gate(store)
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.fail_badges = True
        with pytest.raises(BadgeLookupError):
            run_async(GateReconciler(store, issuance, platform).reconcile(COMMUNITY_ID, USER_ID))
        assert platform.roles == set()

    def test_badge_lookup_error_is_a_lookup_error(self):
        assert issubclass(BadgeLookupError, LookupError)

    def test_one_failed_grant_does_not_block_others(self, store, issuance, platform):
        _gate(store, target_id=1, required=(1001,))
        _gate(store, target_id=2, required=(1001,))
        platform.fail_role_ids.add(1)
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.give_badges(VITALIK_ADDRESS, 1001)

        (action,) = run_async(GateReconciler(store, issuance, platform).reconcile(COMMUNITY_ID, USER_ID))
        assert action.target_id == 2

    def test_other_community_gates_are_ignored(self, store, issuance, platform):
        store.create_gate(
            community_id=COMMUNITY_ID + 1, gate_type="role", target_id=ROLE_ID,
            required_event_ids=[1001], created_by=ADMIN_ID,
        )
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.give_badges(VITALIK_ADDRESS, 1001)
        assert run_async(GateReconciler(store, issuance, platform).reconcile(COMMUNITY_ID, USER_ID)) == []
        assert issuance.calls == []


class TestTriggers:
    def test_member_join_reconciles(self, store, issuance, platform):
        _gate(store, required=(1001,))
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.give_badges(VITALIK_ADDRESS, 1001)
        reconciler = GateReconciler(store, issuance, platform)
        run_async(reconciler.handle_trigger(TriggerEvent(
            community_id=COMMUNITY_ID, trigger_type=TriggerType.MEMBER_JOIN, user_id=USER_ID,
        )))
        assert (COMMUNITY_ID, USER_ID, ROLE_ID) in platform.roles

    def test_other_triggers_are_ignored(self, store, issuance, platform):
        _gate(store, required=(1001,))
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.give_badges(VITALIK_ADDRESS, 1001)
        run_async(GateReconciler(store, issuance, platform).handle_trigger(TriggerEvent(
            community_id=COMMUNITY_ID, trigger_type=TriggerType.MESSAGE_SENT, user_id=USER_ID,
        )))
        assert platform.roles == set()

    def test_wallet_linked_reconciles(self, store, issuance, platform):
        _gate(store, required=(1001,))
        store.link_wallet(USER_ID, VITALIK_ADDRESS)
        issuance.give_badges(VITALIK_ADDRESS, 1001)
        run_async(GateReconciler(store, issuance, platform).handle_wallet_linked(WalletLinked(
            community_id=COMMUNITY_ID, user_id=USER_ID, address=VITALIK_ADDRESS.lower(),
        )))
        assert (COMMUNITY_ID, USER_ID, ROLE_ID) in platform.roles
