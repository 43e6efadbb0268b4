"""create alerting tables

Revision ID: 3f1c9a2d7b10
Revises:
Create Date: 2026-10-18 09:12:40.118204
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3f1c9a2d7b10"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _target_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("traffic_quota", sa.BigInteger, nullable=False),
        sa.Column("quota_used", sa.BigInteger, nullable=False),
        sa.Column("quota_exceeded", sa.Boolean, nullable=False),
        sa.Column("quota_reset_day", sa.Integer, nullable=False),
        sa.Column("quota_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("traffic_quota >= 0", name=f"ck_{name}_quota_non_negative"),
        sa.CheckConstraint("quota_used >= 0", name=f"ck_{name}_used_non_negative"),
        sa.CheckConstraint("quota_reset_day BETWEEN 1 AND 31", name=f"ck_{name}_reset_day_range"),
    )
    op.create_index(f"ix_{name}_status", name, ["status"])


def upgrade() -> None:
    _target_table("nodes")
    _target_table("clients")

    op.create_table(
        "alert_rules",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("condition", sa.Text, nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=False),
        sa.Column("cooldown_minutes", sa.Integer, nullable=False),
        sa.Column("channel_ids", sa.String(length=255), nullable=False),
        sa.Column("last_alert_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_alert_rules_type_enabled", "alert_rules", ["type", "enabled"])

    op.create_table(
        "notify_channels",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("config", sa.Text, nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "alert_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("rule_id", sa.Integer, nullable=True),
        sa.Column("rule_name", sa.String(length=120), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("target_type", sa.String(length=16), nullable=False),
        sa.Column("target_id", sa.Integer, nullable=False),
        sa.Column("target_name", sa.String(length=120), nullable=False),
        sa.Column("channel_id", sa.Integer, nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("dedup_key", sa.String(length=160), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_alert_logs_rule_id", "alert_logs", ["rule_id"])
    op.create_index("ix_alert_logs_type", "alert_logs", ["type"])
    op.create_index("ix_alert_logs_created_at", "alert_logs", ["created_at"])
    op.create_index("ix_alert_logs_dedup_key_created_at", "alert_logs", ["dedup_key", "created_at"])

    op.create_table(
        "scheduler_locks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=64), nullable=False, unique=True),
        sa.Column("owner", sa.String(length=128), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("scheduler_locks")
    op.drop_index("ix_alert_logs_dedup_key_created_at", table_name="alert_logs")
    op.drop_index("ix_alert_logs_created_at", table_name="alert_logs")
    op.drop_index("ix_alert_logs_type", table_name="alert_logs")
    op.drop_index("ix_alert_logs_rule_id", table_name="alert_logs")
    op.drop_table("alert_logs")
    op.drop_table("notify_channels")
    op.drop_index("ix_alert_rules_type_enabled", table_name="alert_rules")
    op.drop_table("alert_rules")
    for name in ("clients", "nodes"):
        op.drop_index(f"ix_{name}_status", table_name=name)
        op.drop_table(name)
