"""
poapbot.engine.rules — Rule Engine
===================================

Evaluates automation rules against a trigger occurrence::

    on_trigger(community_id, trigger_type, user_id, context)
        → list[DistributionOutcome]

For every **active** rule of the community and trigger type:

1. ``trigger_data`` filter: every key the rule declares must equal the
   same key in the trigger context, otherwise ``skipped_filtered``.
2. No wallet link for the user → ``skipped_unlinked`` (not an error).
3. A pending or claimed record for this rule and user already exists →
   ``skipped_duplicate``, without calling the issuance service.
4. Issue through :class:`~poapbot.services.distribution.BadgeDistributor`
   (pending row first, claim, settle).
5. Report ``issued`` / ``skipped_exhausted`` / ``skipped_duplicate`` /
   ``failed`` for that rule alone.

Rules are isolated from one another: an exception in one is logged and
recorded as ``failed`` without affecting the rest.  Failed claims are never
retried here; an admin re-trigger is the retry path.  The engine keeps no
state between calls: rules and links are read fresh every time.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from poapbot.database.engine import run_db
from poapbot.database.models import AUTOMATION_ACTOR, AutomationRule, TriggerType
from poapbot.engine.events import TriggerEvent
from poapbot.engine.platform import Platform
from poapbot.exceptions import (
    DuplicateDistributionError,
    ExhaustedSupplyError,
    IssuanceAPIError,
)

logger = logging.getLogger(__name__)


class OutcomeStatus(enum.StrEnum):
    ISSUED = "issued"
    SKIPPED_UNLINKED = "skipped_unlinked"
    SKIPPED_EXHAUSTED = "skipped_exhausted"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    SKIPPED_FILTERED = "skipped_filtered"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class DistributionOutcome:
    rule_id: int
    event_id: int
    status: OutcomeStatus
    distribution_id: int | None = None
    detail: str | None = None


def matches_trigger_data(trigger_data: dict | None, context: dict) -> bool:
    """``True`` when every key of *trigger_data* equals the context value.

    Values compare as strings so snowflakes stored as text still match.
    """
    if not trigger_data:
        return True
    for key, expected in trigger_data.items():
        if key not in context or str(context[key]) != str(expected):
            return False
    return True


class RuleEngine:
    """Automation rules → badge issuance."""

    def __init__(self, store, distributor, *, platform: Platform | None = None, catalog=None) -> None:
        self.store = store
        self.distributor = distributor
        self.platform = platform
        self.catalog = catalog

    # -- Bus entry point -----------------------------------------------------

    async def handle_event(self, event: TriggerEvent) -> list[DistributionOutcome]:
        return await self.on_trigger(
            event.community_id, event.trigger_type, event.user_id, event.context
        )

    # -- Evaluation ----------------------------------------------------------

    async def on_trigger(
        self,
        community_id: int,
        trigger_type: TriggerType | str,
        subject_user_id: int,
        context: dict | None = None,
    ) -> list[DistributionOutcome]:
        trigger = TriggerType(trigger_type)
        context = context or {}

        rules = await run_db(self.store.list_active_rules, community_id, trigger.value)
        if not rules:
            return []

        link = await run_db(self.store.get_wallet_link, subject_user_id)

        outcomes: list[DistributionOutcome] = []
        for rule in rules:
            try:
                outcome = await self._evaluate(rule, trigger, subject_user_id, link, context)
            except Exception as exc:
                logger.exception(
                    "Rule %d failed for user %d on %s", rule.id, subject_user_id, trigger
                )
                outcome = DistributionOutcome(
                    rule_id=rule.id, event_id=rule.event_id,
                    status=OutcomeStatus.FAILED, detail=str(exc),
                )
            outcomes.append(outcome)
        return outcomes

    async def _evaluate(
        self,
        rule: AutomationRule,
        trigger: TriggerType,
        user_id: int,
        link,
        context: dict,
    ) -> DistributionOutcome:
        def outcome(status: OutcomeStatus, **kw) -> DistributionOutcome:
            return DistributionOutcome(rule_id=rule.id, event_id=rule.event_id, status=status, **kw)

        if not matches_trigger_data(rule.trigger_data, context):
            return outcome(OutcomeStatus.SKIPPED_FILTERED)
        if link is None:
            return outcome(OutcomeStatus.SKIPPED_UNLINKED)

        # The unique index still guards the race between this read and the insert.
        live = await run_db(self.store.get_live_distribution, rule.id, user_id)
        if live is not None:
            return outcome(OutcomeStatus.SKIPPED_DUPLICATE, distribution_id=live.id)

        try:
            attempt = await self.distributor.issue(
                community_id=rule.community_id,
                user_id=user_id,
                address=link.address,
                event_id=rule.event_id,
                secret_code=rule.secret_code,
                distributed_by=AUTOMATION_ACTOR,
                rule_id=rule.id,
            )
        except ExhaustedSupplyError as exc:
            logger.warning("Rule %d: %s", rule.id, exc)
            return outcome(OutcomeStatus.SKIPPED_EXHAUSTED, detail=str(exc))
        except DuplicateDistributionError:
            logger.info("Rule %d already issued to user %d; skipping", rule.id, user_id)
            return outcome(OutcomeStatus.SKIPPED_DUPLICATE)
        except IssuanceAPIError as exc:
            logger.warning("Rule %d: claim links unavailable: %s", rule.id, exc)
            return outcome(OutcomeStatus.FAILED, detail=str(exc))

        if not attempt.claimed:
            return outcome(
                OutcomeStatus.FAILED,
                distribution_id=attempt.record.id,
                detail=attempt.record.failure_reason,
            )

        await self._notify(rule, trigger, user_id, context)
        return outcome(OutcomeStatus.ISSUED, distribution_id=attempt.record.id)

    async def _notify(self, rule: AutomationRule, trigger: TriggerType, user_id: int, context: dict) -> None:
        """Best-effort DM to the recipient.  Never raises."""
        if self.platform is None:
            return
        try:
            name = (
                await self.catalog.event_name(rule.event_id)
                if self.catalog is not None
                else f"Event #{rule.event_id}"
            )
            if trigger is TriggerType.MEMBER_JOIN:
                community = context.get("community_name") or "the server"
                content = f"\U0001f389 Welcome to **{community}**! You've been awarded a POAP: **{name}**"
            else:
                content = f"\U0001f381 You've been awarded a POAP: **{name}**"
            await self.platform.send_direct_message(user_id, content)
        except Exception as exc:
            logger.info("Could not DM user %d about rule %d: %s", user_id, rule.id, exc)
