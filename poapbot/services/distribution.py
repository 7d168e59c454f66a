"""
poapbot.services.distribution — Badge Distributor
==================================================

The single issuance sequence used by both automation rules and the manual
``distribute-badge`` command:

    1. Fetch unclaimed claim links       (empty → ExhaustedSupplyError)
    2. Write a ``pending`` DistributionRecord for the first usable link
    3. Submit the claim to the issuance service
    4. Settle the record to ``claimed`` or ``failed``

Steps 3 and 4 run in a task shielded from cancellation: if the caller
goes away (interaction deadline, shutdown of the request), the claim and
its terminal write still complete.  A crash between 2 and 4 leaves a
``pending`` row to reconcile by hand.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from poapbot.database.engine import run_db
from poapbot.database.models import DistributionRecord, DistributionStatus
from poapbot.exceptions import (
    ClaimTokenTakenError,
    ExhaustedSupplyError,
    IssuanceAPIError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DistributionAttempt:
    """Settled record plus the claim error, if the claim failed."""

    record: DistributionRecord
    error: IssuanceAPIError | None = None

    @property
    def claimed(self) -> bool:
        return self.record.status == DistributionStatus.CLAIMED

    @property
    def tx_hash(self) -> str | None:
        return self.record.tx_hash


class BadgeDistributor:
    """Runs the pending → claimed|failed sequence against the store."""

    def __init__(self, store, issuance) -> None:
        self.store = store
        self.issuance = issuance
        self._inflight: set[asyncio.Task] = set()

    async def issue(
        self,
        *,
        community_id: int,
        user_id: int,
        address: str,
        event_id: int,
        secret_code: str,
        distributed_by: str,
        rule_id: int | None = None,
    ) -> DistributionAttempt:
        """Issue one badge of *event_id* to *address*.

        Raises
        ------
        ExhaustedSupplyError
            No claim links remain.
        DuplicateDistributionError
            A live record already exists for this rule and user.
        IssuanceAPIError
            Claim links could not be fetched (nothing was recorded).
        """
        tokens = await self.issuance.get_claim_links(event_id, secret_code)
        if not tokens:
            raise ExhaustedSupplyError(event_id)

        record = await self._open(
            tokens,
            community_id=community_id,
            user_id=user_id,
            event_id=event_id,
            distributed_by=distributed_by,
            rule_id=rule_id,
        )

        task = asyncio.ensure_future(self._claim_and_settle(record, address, secret_code))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _open(self, tokens: list[str], *, rule_id: int | None, **fields) -> DistributionRecord:
        for token in tokens:
            try:
                return await run_db(
                    self.store.open_distribution, claim_token=token, rule_id=rule_id, **fields
                )
            except ClaimTokenTakenError:
                logger.info("Claim token in use, trying next link for event %d", fields["event_id"])
        raise ExhaustedSupplyError(fields["event_id"])

    async def _claim_and_settle(
        self, record: DistributionRecord, address: str, secret_code: str
    ) -> DistributionAttempt:
        try:
            result = await self.issuance.claim(record.claim_token, address, secret_code)
        except IssuanceAPIError as exc:
            logger.warning(
                "Claim failed for distribution %d (event %d, user %d): %s",
                record.id, record.event_id, record.user_id, exc,
            )
            settled = await run_db(
                self.store.settle_distribution, record.id, claimed=False, failure_reason=str(exc)
            )
            return DistributionAttempt(record=settled, error=exc)

        settled = await run_db(
            self.store.settle_distribution, record.id, claimed=True, tx_hash=result.tx_hash
        )
        logger.info(
            "Badge issued: event %d → user %d (%s) distribution %d",
            record.event_id, record.user_id, address, record.id,
        )
        return DistributionAttempt(record=settled)

    async def drain(self) -> None:
        """Wait for shielded claims still in flight (used at shutdown)."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
