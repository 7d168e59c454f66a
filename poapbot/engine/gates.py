"""
poapbot.engine.gates — Gate Reconciler
=======================================

Recomputes which roles and channels a user is entitled to from their badge
collection and applies whatever is missing.

* No wallet link → nothing to do.
* Badge collection unavailable → :class:`~poapbot.exceptions.BadgeLookupError`
  before any grant is applied.
* A gate matches when the owned event ids are a superset of
  ``required_event_ids``.
* Grants the user already has are skipped, so running twice in a row
  applies nothing the second time.
* Each gate is applied on its own; one failed grant does not undo or
  block another.

Member joins and wallet links both land in :meth:`GateReconciler.reconcile`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from poapbot.database.engine import run_db
from poapbot.database.models import AccessGate, GateType, TriggerType
from poapbot.engine.events import TriggerEvent, WalletLinked
from poapbot.engine.platform import Platform
from poapbot.exceptions import BadgeLookupError, IssuanceAPIError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GrantAction:
    gate_id: int
    gate_type: GateType
    target_id: int
    user_id: int


def evaluate_gates(gates: Iterable[AccessGate], owned_event_ids: set[int] | frozenset[int]) -> list[AccessGate]:
    """Gates whose requirements are all present in *owned_event_ids*."""
    owned = frozenset(owned_event_ids)
    return [gate for gate in gates if gate.required_set <= owned]


class GateReconciler:
    def __init__(self, store, issuance, platform: Platform) -> None:
        self.store = store
        self.issuance = issuance
        self.platform = platform

    # -- Bus entry points ----------------------------------------------------

    async def handle_trigger(self, event: TriggerEvent) -> None:
        if event.trigger_type == TriggerType.MEMBER_JOIN:
            await self.reconcile(event.community_id, event.user_id)

    async def handle_wallet_linked(self, event: WalletLinked) -> None:
        await self.reconcile(event.community_id, event.user_id)

    # -- Reconciliation ------------------------------------------------------

    async def reconcile(self, community_id: int, user_id: int) -> list[GrantAction]:
        link = await run_db(self.store.get_wallet_link, user_id)
        if link is None:
            return []

        gates = await run_db(self.store.list_gates, community_id)
        if not gates:
            return []

        try:
            badges = await self.issuance.get_user_badges(link.address)
        except IssuanceAPIError as exc:
            raise BadgeLookupError(
                f"Badge collection unavailable for user {user_id}: {exc}"
            ) from exc

        owned = {badge.event_id for badge in badges}
        applied: list[GrantAction] = []
        for gate in evaluate_gates(gates, owned):
            try:
                if await self._apply(gate, community_id, user_id):
                    applied.append(GrantAction(
                        gate_id=gate.id,
                        gate_type=GateType(gate.gate_type),
                        target_id=gate.target_id,
                        user_id=user_id,
                    ))
            except Exception:
                logger.exception("Gate %d grant failed for user %d", gate.id, user_id)
        return applied

    async def _apply(self, gate: AccessGate, community_id: int, user_id: int) -> bool:
        """Apply one grant.  Returns ``False`` when it already exists."""
        if gate.gate_type == GateType.ROLE:
            if await self.platform.has_role(community_id, user_id, gate.role_id):
                return False
            await self.platform.add_role(community_id, user_id, gate.role_id)
            logger.info("Granted role %d to user %d via gate %d", gate.role_id, user_id, gate.id)
            return True

        if await self.platform.has_channel_access(community_id, user_id, gate.channel_id):
            return False
        await self.platform.grant_channel_access(community_id, user_id, gate.channel_id)
        logger.info("Granted channel %d to user %d via gate %d", gate.channel_id, user_id, gate.id)
        return True
