"""Initial schema

Wallet links, distribution records, automation rules, access gates, the
event metadata cache and the admin audit log.

Revision ID: 5c1e2a7d9b30
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "5c1e2a7d9b30"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
LIVE = sa.text("status != 'failed'")
LIVE_RULE_ISSUE = sa.text("rule_id IS NOT NULL AND status != 'failed'")


def upgrade() -> None:
    op.create_table(
        "wallet_links",
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("address", sa.String(42), nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=True),
        sa.Column("linked_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_wallet_links_address", "wallet_links", ["address"])

    op.create_table(
        "distribution_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("community_id", sa.BigInteger(), nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("rule_id", sa.Integer(), nullable=True),
        sa.Column("claim_token", sa.String(128), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("distributed_by", sa.String(32), nullable=False),
        sa.Column("tx_hash", sa.String(100), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'claimed', 'failed')",
            name="ck_distribution_status",
        ),
    )
    op.create_index(
        "ix_distribution_rule_user_live",
        "distribution_records",
        ["rule_id", "user_id"],
        unique=True,
        postgresql_where=LIVE_RULE_ISSUE,
        sqlite_where=LIVE_RULE_ISSUE,
    )
    op.create_index(
        "ix_distribution_token_live",
        "distribution_records",
        ["claim_token"],
        unique=True,
        postgresql_where=LIVE,
        sqlite_where=LIVE,
    )
    op.create_index(
        "ix_distribution_user_time", "distribution_records", ["user_id", "created_at"]
    )

    op.create_table(
        "automation_rules",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("community_id", sa.BigInteger(), nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("trigger_type", sa.String(20), nullable=False),
        sa.Column("trigger_data", JSONType, nullable=True),
        sa.Column("secret_code", sa.String(100), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=True),
        sa.Column("created_by", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_rules_community_trigger",
        "automation_rules",
        ["community_id", "trigger_type", "active"],
    )

    op.create_table(
        "access_gates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("community_id", sa.BigInteger(), nullable=False),
        sa.Column("channel_id", sa.BigInteger(), nullable=True),
        sa.Column("role_id", sa.BigInteger(), nullable=True),
        sa.Column("required_event_ids", JSONType, nullable=False),
        sa.Column("gate_type", sa.String(10), nullable=False),
        sa.Column("created_by", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "(gate_type = 'role' AND role_id IS NOT NULL AND channel_id IS NULL) OR "
            "(gate_type = 'channel' AND channel_id IS NOT NULL AND role_id IS NULL)",
            name="ck_access_gate_target",
        ),
    )
    op.create_index("ix_access_gates_community", "access_gates", ["community_id"])

    op.create_table(
        "event_cache",
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("payload", JSONType, nullable=False),
        sa.Column("cached_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("community_id", sa.BigInteger(), nullable=False),
        sa.Column("actor_id", sa.BigInteger(), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", JSONType, nullable=True),
        sa.Column("after_snapshot", JSONType, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_admin_log_community_time", "admin_log", ["community_id", "timestamp"]
    )


def downgrade() -> None:
    op.drop_index("ix_admin_log_community_time", table_name="admin_log")
    op.drop_table("admin_log")
    op.drop_table("event_cache")
    op.drop_index("ix_access_gates_community", table_name="access_gates")
    op.drop_table("access_gates")
    op.drop_index("ix_rules_community_trigger", table_name="automation_rules")
    op.drop_table("automation_rules")
    op.drop_index("ix_distribution_user_time", table_name="distribution_records")
    op.drop_index("ix_distribution_token_live", table_name="distribution_records")
    op.drop_index("ix_distribution_rule_user_live", table_name="distribution_records")
    op.drop_table("distribution_records")
    op.drop_index("ix_wallet_links_address", table_name="wallet_links")
    op.drop_table("wallet_links")
