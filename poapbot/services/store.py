"""
poapbot.services.store — Entitlement Store
===========================================

Sole owner of persisted state: wallet links, distribution records,
automation rules, access gates and the event cache.  No other component
touches the ORM directly; everything else goes through an
:class:`EntitlementStore` instance.

All methods are **synchronous** and open their own short-lived session.
Async callers bridge through :func:`~poapbot.database.engine.run_db`::

    link = await run_db(store.get_wallet_link, user_id)

Admin mutations (rule create/toggle, gate create/remove) follow the audited
pattern: read "before" snapshot → apply change → write ``admin_log`` row
with before/after JSON → commit, all in one transaction.

Any :class:`~sqlalchemy.exc.SQLAlchemyError` surfaces as
:class:`~poapbot.exceptions.StoreError`; a uniqueness violation on the
pending distribution row surfaces as
:class:`~poapbot.exceptions.DuplicateDistributionError`.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, ParamSpec, TypeVar

from sqlalchemy import Engine, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from poapbot.constants import CANONICAL_ADDRESS_RE
from poapbot.database.engine import get_session
from poapbot.database.models import (
    AccessGate,
    AdminLog,
    AutomationRule,
    DistributionRecord,
    DistributionStatus,
    EventCache,
    GateType,
    TriggerType,
    WalletLink,
)
from poapbot.exceptions import (
    ClaimTokenTakenError,
    DuplicateDistributionError,
    InvalidInputError,
    PoapBotError,
    StoreError,
)

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _store_errors(func: Callable[P, T]) -> Callable[P, T]:
    """Translate SQLAlchemy failures into :class:`StoreError`."""

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return func(*args, **kwargs)
        except PoapBotError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Store operation %s failed: %s", func.__name__, exc)
            raise StoreError(f"{func.__name__} failed: {exc.__class__.__name__}") from exc

    return wrapper


def _row_to_dict(obj: Any) -> dict | None:
    """Convert a model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def _redact(snapshot: dict | None) -> dict | None:
    """Drop secret codes from an audit snapshot."""
    if snapshot is None:
        return None
    return {k: ("***" if k == "secret_code" else v) for k, v in snapshot.items()}


def _log_admin_action(
    session: Session,
    *,
    community_id: int,
    actor_id: int,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
) -> None:
    session.add(AdminLog(
        community_id=community_id,
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=_redact(before),
        after_snapshot=_redact(after),
    ))


def canonical_address(address: str) -> str:
    """Lowercase *address* and check it against the canonical pattern."""
    normalized = address.strip().lower()
    if not CANONICAL_ADDRESS_RE.match(normalized):
        raise InvalidInputError(f"Not a valid wallet address: {address!r}")
    return normalized


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
class EntitlementStore:
    """Durable entitlement state behind a small synchronous API."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # -- Wallet links -------------------------------------------------------

    @_store_errors
    def link_wallet(self, user_id: int, address: str, *, verified: bool = False) -> WalletLink:
        """Create or overwrite the link for *user_id* (last write wins)."""
        normalized = canonical_address(address)
        with get_session(self.engine) as session:
            link = session.get(WalletLink, user_id)
            if link is None:
                link = WalletLink(user_id=user_id, address=normalized, verified=verified)
                session.add(link)
            else:
                link.address = normalized
                link.verified = verified
                link.linked_at = datetime.now(UTC)
            session.flush()
        logger.info("Wallet linked: user %d → %s", user_id, normalized)
        return link

    @_store_errors
    def get_wallet_link(self, user_id: int) -> WalletLink | None:
        with get_session(self.engine) as session:
            return session.get(WalletLink, user_id)

    # -- Distribution records ----------------------------------------------

    @_store_errors
    def open_distribution(
        self,
        *,
        user_id: int,
        community_id: int,
        event_id: int,
        claim_token: str,
        distributed_by: str,
        rule_id: int | None = None,
    ) -> DistributionRecord:
        """Insert a ``pending`` record ahead of the claim call.

        Raises :class:`DuplicateDistributionError` when a live record already
        exists for the same rule and user, and :class:`ClaimTokenTakenError`
        when the claim token is held by any other live record.
        """
        record = DistributionRecord(
            user_id=user_id,
            community_id=community_id,
            event_id=event_id,
            rule_id=rule_id,
            claim_token=claim_token,
            distributed_by=distributed_by,
            status=DistributionStatus.PENDING.value,
        )
        try:
            with get_session(self.engine) as session:
                session.add(record)
                session.flush()
        except IntegrityError as exc:
            if rule_id is not None and self._live_distribution(rule_id, user_id) is not None:
                raise DuplicateDistributionError(
                    f"Live distribution exists for rule={rule_id} user={user_id}"
                ) from exc
            raise ClaimTokenTakenError(f"Claim token for event {event_id} is in use") from exc
        return record

    @_store_errors
    def get_live_distribution(self, rule_id: int, user_id: int) -> DistributionRecord | None:
        """The pending or claimed record of *rule_id* for *user_id*, if any."""
        return self._live_distribution(rule_id, user_id)

    def _live_distribution(self, rule_id: int, user_id: int) -> DistributionRecord | None:
        stmt = select(DistributionRecord).where(
            DistributionRecord.rule_id == rule_id,
            DistributionRecord.user_id == user_id,
            DistributionRecord.status != DistributionStatus.FAILED.value,
        )
        with get_session(self.engine) as session:
            return session.scalars(stmt).first()

    @_store_errors
    def settle_distribution(
        self,
        record_id: int,
        *,
        claimed: bool,
        tx_hash: str | None = None,
        failure_reason: str | None = None,
    ) -> DistributionRecord:
        """Move a record from ``pending`` to ``claimed`` or ``failed``.

        Any other transition is refused with :class:`StoreError`.
        """
        values: dict[str, Any] = {
            "status": (DistributionStatus.CLAIMED if claimed else DistributionStatus.FAILED).value,
        }
        if claimed:
            values["claimed_at"] = datetime.now(UTC)
            values["tx_hash"] = tx_hash
        else:
            values["failure_reason"] = (failure_reason or "")[:500]

        with get_session(self.engine) as session:
            result = session.execute(
                update(DistributionRecord)
                .where(
                    DistributionRecord.id == record_id,
                    DistributionRecord.status == DistributionStatus.PENDING.value,
                )
                .values(**values)
            )
            if result.rowcount != 1:
                raise StoreError(f"Distribution {record_id} is not pending")
            return session.get(DistributionRecord, record_id, populate_existing=True)

    @_store_errors
    def list_distributions(
        self,
        *,
        community_id: int | None = None,
        user_id: int | None = None,
        limit: int = 50,
    ) -> list[DistributionRecord]:
        stmt = select(DistributionRecord)
        if community_id is not None:
            stmt = stmt.where(DistributionRecord.community_id == community_id)
        if user_id is not None:
            stmt = stmt.where(DistributionRecord.user_id == user_id)
        stmt = stmt.order_by(DistributionRecord.id.desc()).limit(limit)
        with get_session(self.engine) as session:
            return list(session.scalars(stmt))

    @_store_errors
    def record_admin_action(
        self,
        *,
        community_id: int,
        actor_id: int,
        action_type: str,
        target_table: str,
        target_id: str | None,
        after: dict | None = None,
    ) -> None:
        """Append a stand-alone audit entry (manual distributions)."""
        with get_session(self.engine) as session:
            _log_admin_action(
                session,
                community_id=community_id,
                actor_id=actor_id,
                action_type=action_type,
                target_table=target_table,
                target_id=target_id,
                before=None,
                after=after,
            )

    # -- Automation rules ---------------------------------------------------

    @_store_errors
    def create_rule(
        self,
        *,
        community_id: int,
        event_id: int,
        trigger_type: str,
        secret_code: str,
        created_by: int,
        trigger_data: dict | None = None,
    ) -> AutomationRule:
        trigger = TriggerType(trigger_type)
        rule = AutomationRule(
            community_id=community_id,
            event_id=event_id,
            trigger_type=trigger.value,
            trigger_data=trigger_data or None,
            secret_code=secret_code,
            active=True,
            created_by=created_by,
        )
        with get_session(self.engine) as session:
            session.add(rule)
            session.flush()
            _log_admin_action(
                session,
                community_id=community_id,
                actor_id=created_by,
                action_type="CREATE",
                target_table="automation_rules",
                target_id=str(rule.id),
                before=None,
                after=_row_to_dict(rule),
            )
        logger.info(
            "Automation rule %d created: %s → event %d (community %d)",
            rule.id, trigger.value, event_id, community_id,
        )
        return rule

    @_store_errors
    def get_rule(self, rule_id: int) -> AutomationRule | None:
        with get_session(self.engine) as session:
            return session.get(AutomationRule, rule_id)

    @_store_errors
    def list_rules(self, community_id: int, *, active: bool | None = None) -> list[AutomationRule]:
        """Every rule of *community_id*, optionally filtered by ``active``."""
        stmt = select(AutomationRule).where(AutomationRule.community_id == community_id)
        if active is not None:
            stmt = stmt.where(AutomationRule.active.is_(active))
        stmt = stmt.order_by(AutomationRule.created_at.desc(), AutomationRule.id.desc())
        with get_session(self.engine) as session:
            return list(session.scalars(stmt))

    @_store_errors
    def list_active_rules(self, community_id: int, trigger_type: str) -> list[AutomationRule]:
        stmt = (
            select(AutomationRule)
            .where(
                AutomationRule.community_id == community_id,
                AutomationRule.trigger_type == str(trigger_type),
                AutomationRule.active.is_(True),
            )
            .order_by(AutomationRule.id)
        )
        with get_session(self.engine) as session:
            return list(session.scalars(stmt))

    @_store_errors
    def set_rule_active(
        self,
        rule_id: int,
        active: bool,
        *,
        actor_id: int,
        community_id: int,
    ) -> AutomationRule | None:
        """Toggle ``active`` on a rule of *community_id*.

        Returns ``None`` when no such rule exists in that community.
        """
        with get_session(self.engine) as session:
            rule = session.get(AutomationRule, rule_id)
            if rule is None or rule.community_id != community_id:
                return None
            before = _row_to_dict(rule)
            rule.active = active
            session.flush()
            _log_admin_action(
                session,
                community_id=community_id,
                actor_id=actor_id,
                action_type="UPDATE",
                target_table="automation_rules",
                target_id=str(rule.id),
                before=before,
                after=_row_to_dict(rule),
            )
        logger.info("Automation rule %d %s", rule_id, "enabled" if active else "disabled")
        return rule

    # -- Access gates -------------------------------------------------------

    @_store_errors
    def create_gate(
        self,
        *,
        community_id: int,
        gate_type: str,
        target_id: int,
        required_event_ids: list[int] | set[int],
        created_by: int,
    ) -> AccessGate:
        kind = GateType(gate_type)
        required = sorted({int(i) for i in required_event_ids})
        if not required:
            raise InvalidInputError("A gate needs at least one badge id")

        gate = AccessGate(
            community_id=community_id,
            gate_type=kind.value,
            role_id=target_id if kind is GateType.ROLE else None,
            channel_id=target_id if kind is GateType.CHANNEL else None,
            required_event_ids=required,
            created_by=created_by,
        )
        with get_session(self.engine) as session:
            session.add(gate)
            session.flush()
            _log_admin_action(
                session,
                community_id=community_id,
                actor_id=created_by,
                action_type="CREATE",
                target_table="access_gates",
                target_id=str(gate.id),
                before=None,
                after=_row_to_dict(gate),
            )
        logger.info("Access gate %d created: %s %d requires %s", gate.id, kind, target_id, required)
        return gate

    @_store_errors
    def get_gate(self, gate_id: int) -> AccessGate | None:
        with get_session(self.engine) as session:
            return session.get(AccessGate, gate_id)

    @_store_errors
    def list_gates(self, community_id: int) -> list[AccessGate]:
        stmt = (
            select(AccessGate)
            .where(AccessGate.community_id == community_id)
            .order_by(AccessGate.id)
        )
        with get_session(self.engine) as session:
            return list(session.scalars(stmt))

    @_store_errors
    def delete_gate(self, gate_id: int, *, actor_id: int, community_id: int) -> bool:
        """Delete a gate of *community_id*.  Returns ``True`` if it existed."""
        with get_session(self.engine) as session:
            gate = session.get(AccessGate, gate_id)
            if gate is None or gate.community_id != community_id:
                return False
            _log_admin_action(
                session,
                community_id=community_id,
                actor_id=actor_id,
                action_type="DELETE",
                target_table="access_gates",
                target_id=str(gate.id),
                before=_row_to_dict(gate),
                after=None,
            )
            session.delete(gate)
        logger.info("Access gate %d removed by %d", gate_id, actor_id)
        return True

    # -- Event cache --------------------------------------------------------

    @_store_errors
    def cache_event(self, event_id: int, payload: dict) -> None:
        with get_session(self.engine) as session:
            entry = session.get(EventCache, event_id)
            if entry is None:
                session.add(EventCache(event_id=event_id, payload=payload))
            else:
                entry.payload = payload
                entry.cached_at = datetime.now(UTC)

    @_store_errors
    def get_cached_event(self, event_id: int, *, max_age: int = 3600) -> dict | None:
        """Return the cached payload if it is younger than *max_age* seconds."""
        cutoff = datetime.now(UTC) - timedelta(seconds=max_age)
        stmt = select(EventCache.payload).where(
            EventCache.event_id == event_id,
            EventCache.cached_at > cutoff,
        )
        with get_session(self.engine) as session:
            return session.scalar(stmt)
