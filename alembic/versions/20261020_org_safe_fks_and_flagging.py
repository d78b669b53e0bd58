"""db hardening: org-safe foreign keys, warehouse managers, attendance flag

Revision ID: 20261020_org_safe_fks
Revises: 20261019_dispatch_initial
Create Date: 2026-10-20 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261020_org_safe_fks"
down_revision: Union[str, Sequence[str], None] = "20261019_dispatch_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# (org_id, id) targets for the composite FKs below
ORG_UNIQUE = [
    ("warehouses", "uq_warehouses_org_id"),
    ("users", "uq_users_org_id"),
    ("routes", "uq_routes_org_id"),
    ("assignments", "uq_assignments_org_id"),
    ("bid_windows", "uq_bid_windows_org_id"),
]

# (table, column, referenced table, constraint name, on delete)
ORG_FKS = [
    ("routes", "warehouse_id", "warehouses", "fk_routes_warehouse_org", None),
    ("routes", "manager_id", "users", "fk_routes_manager_org", None),
    ("assignments", "route_id", "routes", "fk_assignments_route_org", None),
    ("assignments", "warehouse_id", "warehouses", "fk_assignments_warehouse_org", None),
    ("assignments", "user_id", "users", "fk_assignments_user_org", None),
    ("shifts", "assignment_id", "assignments", "fk_shifts_assignment_org", "CASCADE"),
    ("bid_windows", "assignment_id", "assignments", "fk_bid_windows_assignment_org", "CASCADE"),
    ("bid_windows", "winner_id", "users", "fk_bid_windows_winner_org", None),
    ("bids", "bid_window_id", "bid_windows", "fk_bids_bid_window_org", "CASCADE"),
    ("bids", "assignment_id", "assignments", "fk_bids_assignment_org", "CASCADE"),
    ("bids", "user_id", "users", "fk_bids_user_org", None),
    ("driver_metrics", "user_id", "users", "fk_driver_metrics_user_org", None),
    ("driver_health_state", "user_id", "users", "fk_driver_health_state_user_org", None),
    ("driver_preferences", "user_id", "users", "fk_driver_preferences_user_org", None),
    ("route_completions", "user_id", "users", "fk_route_completions_user_org", None),
    ("route_completions", "route_id", "routes", "fk_route_completions_route_org", None),
    ("notifications", "user_id", "users", "fk_notifications_user_org", None),
]


def _add_org_fk(table: str, column: str, ref: str, name: str, ondelete: str | None) -> None:
    on_delete = f" ON DELETE {ondelete}" if ondelete else ""
    op.execute(
        f"""
        DO $$
        BEGIN
            IF NOT EXISTS (
                SELECT 1 FROM pg_constraint WHERE conname = '{name}'
            ) THEN
                ALTER TABLE {table}
                ADD CONSTRAINT {name}
                FOREIGN KEY (org_id, {column})
                REFERENCES {ref} (org_id, id){on_delete};
            END IF;
        END
        $$;
        """
    )


def upgrade() -> None:
    # 1) (org_id, id) unique on every parent
    for table, name in ORG_UNIQUE:
        op.create_unique_constraint(name, table, ["org_id", "id"])

    # 2) legacy single-column FKs -> (org_id, x_id) FKs
    for table, column, ref, name, ondelete in ORG_FKS:
        op.execute(f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {table}_{column}_fkey")
        _add_org_fk(table, column, ref, name, ondelete)

    # 3) who held the assignment when a window opened (answers a cancel retry after refill)
    op.add_column("bid_windows", sa.Column("vacated_user_id", sa.Uuid(), nullable=True))
    op.add_column("bid_windows", sa.Column("vacated_cancel_type", sa.String(), nullable=True))
    _add_org_fk("bid_windows", "vacated_user_id", "users", "fk_bid_windows_vacated_user_org", None)

    # 4) attendance flag grace period
    op.add_column("users", sa.Column("flag_warning_date", sa.DateTime(timezone=True), nullable=True))

    # 5) warehouse managers
    op.create_table(
        "warehouse_managers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("org_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("warehouse_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("warehouse_id", "user_id", name="uq_warehouse_managers_pair"),
        sa.ForeignKeyConstraint(
            ["org_id", "warehouse_id"],
            ["warehouses.org_id", "warehouses.id"],
            name="fk_warehouse_managers_warehouse_org",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["org_id", "user_id"],
            ["users.org_id", "users.id"],
            name="fk_warehouse_managers_user_org",
            ondelete="CASCADE",
        ),
    )
    op.create_index("ix_warehouse_managers_org_id", "warehouse_managers", ["org_id"])
    op.create_index("idx_warehouse_managers_warehouse", "warehouse_managers", ["warehouse_id"])

    # route managers keep their access
    op.execute(
        """
        INSERT INTO warehouse_managers (id, org_id, warehouse_id, user_id)
        SELECT DISTINCT ON (r.warehouse_id, r.manager_id) gen_random_uuid(), r.org_id, r.warehouse_id, r.manager_id
        FROM routes r
        JOIN users u ON u.org_id = r.org_id AND u.id = r.manager_id
        WHERE r.manager_id IS NOT NULL AND u.role = 'manager'
        ON CONFLICT DO NOTHING
        """
    )


def downgrade() -> None:
    op.drop_table("warehouse_managers")
    op.drop_column("users", "flag_warning_date")

    op.execute("ALTER TABLE bid_windows DROP CONSTRAINT IF EXISTS fk_bid_windows_vacated_user_org")
    op.drop_column("bid_windows", "vacated_cancel_type")
    op.drop_column("bid_windows", "vacated_user_id")

    # back to plain FKs on id, named the way the initial schema named them
    for table, column, ref, name, ondelete in reversed(ORG_FKS):
        op.execute(f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {name}")
        op.create_foreign_key(f"{table}_{column}_fkey", table, ref, [column], ["id"], ondelete=ondelete)

    for table, name in reversed(ORG_UNIQUE):
        op.drop_constraint(name, table, type_="unique")
