"""dispatch initial schema

Revision ID: 20261019_dispatch_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_dispatch_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = True, now: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.text("now()") if now else None,
    )


def _org_fk() -> sa.Column:
    return sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False)


def upgrade() -> None:
    """Upgrade schema."""

    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("emergency_bonus_percent", sa.Integer(), nullable=True),
        _ts("created_at", nullable=False, now=True),
    )

    op.create_table(
        "warehouses",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
    )
    op.create_index("ix_warehouses_org_id", "warehouses", ["org_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("weekly_cap", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("is_flagged", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at", nullable=False, now=True),
        sa.CheckConstraint("role IN ('driver','manager','admin')", name="ck_users_role"),
        sa.CheckConstraint("weekly_cap >= 1", name="ck_users_weekly_cap_min"),
    )
    op.create_index("ix_users_org_id", "users", ["org_id"])

    op.create_table(
        "routes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column("warehouse_id", sa.Uuid(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("start_time", sa.Text(), nullable=True),
        sa.Column("manager_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
    )
    op.create_index("ix_routes_org_id", "routes", ["org_id"])

    # ------------------------------------------------------------------
    # assignments
    # ------------------------------------------------------------------
    op.create_table(
        "assignments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column("route_id", sa.Uuid(), sa.ForeignKey("routes.id"), nullable=False),
        sa.Column("warehouse_id", sa.Uuid(), sa.ForeignKey("warehouses.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("assigned_by", sa.String(), nullable=True),
        _ts("assigned_at"),
        _ts("confirmed_at"),
        sa.Column("cancel_type", sa.String(), nullable=True),
        sa.Column("cancel_reason", sa.String(), nullable=True),
        sa.Column("cancel_notes", sa.Text(), nullable=True),
        _ts("cancelled_at"),
        _ts("created_at", nullable=False, now=True),
        _ts("updated_at", nullable=False, now=True),
        sa.CheckConstraint(
            "status IN ('scheduled','active','completed','cancelled','unfilled')",
            name="ck_assignments_status",
        ),
        sa.CheckConstraint(
            "cancel_type IS NULL OR cancel_type IN ('driver','late','auto_drop')",
            name="ck_assignments_cancel_type",
        ),
        sa.CheckConstraint("status <> 'unfilled' OR user_id IS NULL", name="ck_assignments_unfilled_no_user"),
        sa.CheckConstraint(
            "status NOT IN ('active','completed') OR user_id IS NOT NULL",
            name="ck_assignments_active_has_user",
        ),
    )
    op.create_index("ix_assignments_org_id", "assignments", ["org_id"])
    op.create_index("idx_assignments_status_date", "assignments", ["status", "date"])
    op.create_index("idx_assignments_route_date", "assignments", ["route_id", "date"])
    op.create_index(
        "uq_assignments_active_user_date",
        "assignments",
        ["user_id", "date"],
        unique=True,
        postgresql_where=sa.text("user_id IS NOT NULL AND status <> 'cancelled'"),
    )

    op.create_table(
        "shifts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column(
            "assignment_id",
            sa.Uuid(),
            sa.ForeignKey("assignments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _ts("arrived_at"),
        sa.Column("parcels_start", sa.Integer(), nullable=True),
        _ts("started_at"),
        sa.Column("parcels_delivered", sa.Integer(), nullable=True),
        sa.Column("parcels_returned", sa.Integer(), nullable=True),
        _ts("completed_at"),
        _ts("editable_until"),
        _ts("created_at", nullable=False, now=True),
        sa.UniqueConstraint("assignment_id", name="uq_shifts_assignment"),
        sa.CheckConstraint("parcels_start IS NULL OR parcels_start >= 0", name="ck_shifts_parcels_start"),
        sa.CheckConstraint("parcels_returned IS NULL OR parcels_returned >= 0", name="ck_shifts_parcels_returned"),
    )
    op.create_index("ix_shifts_org_id", "shifts", ["org_id"])

    # ------------------------------------------------------------------
    # bidding
    # ------------------------------------------------------------------
    op.create_table(
        "bid_windows",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column(
            "assignment_id",
            sa.Uuid(),
            sa.ForeignKey("assignments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("mode", sa.String(), nullable=False),
        sa.Column("trigger", sa.String(), nullable=True),
        sa.Column("pay_bonus_percent", sa.Integer(), nullable=False, server_default="0"),
        _ts("opens_at", nullable=False),
        _ts("closes_at", nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("winner_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        _ts("resolved_at"),
        _ts("created_at", nullable=False, now=True),
        sa.CheckConstraint("mode IN ('competitive','instant','emergency')", name="ck_bid_windows_mode"),
        sa.CheckConstraint("status IN ('open','closed','resolved')", name="ck_bid_windows_status"),
        sa.CheckConstraint("pay_bonus_percent >= 0", name="ck_bid_windows_bonus_non_negative"),
        sa.CheckConstraint("closes_at > opens_at", name="ck_bid_windows_closes_after_opens"),
        sa.CheckConstraint(
            "(status = 'resolved') = (winner_id IS NOT NULL)",
            name="ck_bid_windows_resolved_has_winner",
        ),
    )
    op.create_index("ix_bid_windows_org_id", "bid_windows", ["org_id"])
    op.create_index("idx_bid_windows_status_closes", "bid_windows", ["status", "closes_at"])
    op.create_index(
        "uq_bid_windows_open_assignment",
        "bid_windows",
        ["assignment_id"],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table(
        "bids",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column(
            "bid_window_id",
            sa.Uuid(),
            sa.ForeignKey("bid_windows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "assignment_id",
            sa.Uuid(),
            sa.ForeignKey("assignments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("score", sa.Float(), nullable=True),
        _ts("bid_at", nullable=False),
        _ts("window_closes_at", nullable=False),
        _ts("resolved_at"),
        sa.CheckConstraint("status IN ('pending','won','lost')", name="ck_bids_status"),
        sa.CheckConstraint("score IS NULL OR (score >= 0 AND score <= 1)", name="ck_bids_score_range"),
        sa.UniqueConstraint("bid_window_id", "user_id", name="uq_bids_window_user"),
    )
    op.create_index("ix_bids_org_id", "bids", ["org_id"])
    op.create_index("idx_bids_window_status", "bids", ["bid_window_id", "status"])
    op.create_index(
        "uq_bids_window_won",
        "bids",
        ["bid_window_id"],
        unique=True,
        postgresql_where=sa.text("status = 'won'"),
    )

    # ------------------------------------------------------------------
    # driver stats / preferences
    # ------------------------------------------------------------------
    op.create_table(
        "driver_metrics",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        *[
            sa.Column(name, sa.Integer(), nullable=False, server_default="0")
            for name in (
                "total_shifts",
                "completed_shifts",
                "confirmed_shifts",
                "arrived_on_time_count",
                "auto_dropped_shifts",
                "late_cancellations",
                "no_shows",
                "bid_pickups",
                "urgent_pickups",
            )
        ],
        sa.Column("attendance_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("completion_rate", sa.Float(), nullable=False, server_default="0"),
        _ts("updated_at", nullable=False, now=True),
        sa.UniqueConstraint("user_id", name="uq_driver_metrics_user"),
    )
    op.create_index("ix_driver_metrics_org_id", "driver_metrics", ["org_id"])

    op.create_table(
        "driver_health_state",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("current_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("requires_manager_intervention", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("last_score_reset_at"),
        _ts("updated_at", nullable=False, now=True),
        sa.UniqueConstraint("user_id", name="uq_driver_health_state_user"),
    )
    op.create_index("ix_driver_health_state_org_id", "driver_health_state", ["org_id"])

    op.create_table(
        "driver_preferences",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("preferred_days", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("preferred_routes", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        _ts("locked_at"),
        sa.UniqueConstraint("user_id", name="uq_driver_preferences_user"),
    )
    op.create_index("ix_driver_preferences_org_id", "driver_preferences", ["org_id"])

    op.create_table(
        "route_completions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("route_id", sa.Uuid(), sa.ForeignKey("routes.id"), nullable=False),
        sa.Column("completion_count", sa.Integer(), nullable=False, server_default="0"),
        _ts("last_completed_at"),
        sa.UniqueConstraint("user_id", "route_id", name="uq_route_completions_user_route"),
    )
    op.create_index("ix_route_completions_org_id", "route_completions", ["org_id"])

    # ------------------------------------------------------------------
    # notifications / audit
    # ------------------------------------------------------------------
    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("data", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index("ix_notifications_org_id", "notifications", ["org_id"])
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _org_fk(),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("actor_type", sa.String(), nullable=False),
        sa.Column("actor_id", sa.Uuid(), nullable=True),
        sa.Column("changes", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        _ts("created_at", nullable=False, now=True),
    )
    op.create_index("ix_audit_logs_org_id", "audit_logs", ["org_id"])
    op.create_index("idx_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        "audit_logs",
        "notifications",
        "route_completions",
        "driver_preferences",
        "driver_health_state",
        "driver_metrics",
        "bids",
        "bid_windows",
        "shifts",
        "assignments",
        "routes",
        "users",
        "warehouses",
        "organizations",
    ):
        op.drop_table(table)
