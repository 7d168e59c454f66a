"""
poapbot.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- wallet_links          — Discord user → canonical wallet address (last write wins)
- distribution_records  — Append-only issuance audit trail (pending → claimed|failed)
- automation_rules      — Trigger → badge issuance mappings
- access_gates          — Badge requirements guarding a role or a channel
- event_cache           — Advisory cache of badge event metadata
- admin_log             — Append-only audit trail of admin mutations

The :class:`~poapbot.services.store.EntitlementStore` is the only writer.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON (TEXT) everywhere else
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all PoapBot ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class TriggerType(enum.StrEnum):
    """Community events that can fire an automation rule."""
    MEMBER_JOIN = "member_join"
    REACTION_ADD = "reaction_add"
    MESSAGE_SENT = "message_sent"


class DistributionStatus(enum.StrEnum):
    """Lifecycle of a distribution record.  Only pending → terminal is legal."""
    PENDING = "pending"
    CLAIMED = "claimed"
    FAILED = "failed"


class GateType(enum.StrEnum):
    ROLE = "role"
    CHANNEL = "channel"


AUTOMATION_ACTOR = "automation"

# Partial-index predicates: failed records free their slot for a retry
_LIVE = text("status != 'failed'")
_LIVE_RULE_ISSUE = text("rule_id IS NOT NULL AND status != 'failed'")


# ---------------------------------------------------------------------------
# WalletLink — one row per Discord user
# ---------------------------------------------------------------------------
class WalletLink(Base):
    __tablename__ = "wallet_links"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    address: Mapped[str] = mapped_column(String(42), nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False)
    linked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_wallet_links_address", "address"),
    )

    def __repr__(self) -> str:
        return f"<WalletLink user={self.user_id} address={self.address}>"


# ---------------------------------------------------------------------------
# DistributionRecord — append-only issuance audit trail
# ---------------------------------------------------------------------------
class DistributionRecord(Base):
    __tablename__ = "distribution_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    community_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_id: Mapped[int] = mapped_column(Integer, nullable=False)
    rule_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    claim_token: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=DistributionStatus.PENDING.value
    )
    distributed_by: Mapped[str] = mapped_column(String(32), nullable=False)
    tx_hash: Mapped[str | None] = mapped_column(String(100), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # At most one live (pending/claimed) automation issuance per rule+user
        Index(
            "ix_distribution_rule_user_live",
            "rule_id",
            "user_id",
            unique=True,
            postgresql_where=_LIVE_RULE_ISSUE,
            sqlite_where=_LIVE_RULE_ISSUE,
        ),
        # A claim token can back at most one live distribution
        Index(
            "ix_distribution_token_live",
            "claim_token",
            unique=True,
            postgresql_where=_LIVE,
            sqlite_where=_LIVE,
        ),
        Index("ix_distribution_user_time", "user_id", "created_at"),
        CheckConstraint(
            "status IN ('pending', 'claimed', 'failed')",
            name="ck_distribution_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<DistributionRecord id={self.id} user={self.user_id} "
            f"event={self.event_id} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# AutomationRule — trigger → issuance mapping
# ---------------------------------------------------------------------------
class AutomationRule(Base):
    __tablename__ = "automation_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    community_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_id: Mapped[int] = mapped_column(Integer, nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    secret_code: Mapped[str] = mapped_column(String(100), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_rules_community_trigger", "community_id", "trigger_type", "active"),
    )

    def __repr__(self) -> str:
        return (
            f"<AutomationRule id={self.id} trigger={self.trigger_type} "
            f"event={self.event_id} active={self.active}>"
        )


# ---------------------------------------------------------------------------
# AccessGate — badge requirements for a role or a channel
# ---------------------------------------------------------------------------
class AccessGate(Base):
    __tablename__ = "access_gates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    community_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    role_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    required_event_ids: Mapped[list[int]] = mapped_column(JSONType, nullable=False)
    gate_type: Mapped[str] = mapped_column(String(10), nullable=False)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "(gate_type = 'role' AND role_id IS NOT NULL AND channel_id IS NULL) OR "
            "(gate_type = 'channel' AND channel_id IS NOT NULL AND role_id IS NULL)",
            name="ck_access_gate_target",
        ),
        Index("ix_access_gates_community", "community_id"),
    )

    @property
    def required_set(self) -> frozenset[int]:
        return frozenset(int(i) for i in self.required_event_ids)

    @property
    def target_id(self) -> int:
        return self.role_id if self.gate_type == GateType.ROLE else self.channel_id  # type: ignore[return-value]

    def __repr__(self) -> str:
        return f"<AccessGate id={self.id} type={self.gate_type} target={self.target_id}>"


# ---------------------------------------------------------------------------
# EventCache — advisory event metadata cache
# ---------------------------------------------------------------------------
class EventCache(Base):
    __tablename__ = "event_cache"

    event_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<EventCache event={self.event_id} cached_at={self.cached_at}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    community_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_admin_log_community_time", "community_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
