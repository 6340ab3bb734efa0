"""
Initial schema - yarn ledger, customer sheets, customer orders

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Yarn inventory lots
    op.create_table(
        "yarn_inventory",
        sa.Column("lot_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("yarn_name", sa.String(255), nullable=False),
        sa.Column("lot_number", sa.String(100), nullable=False),
        sa.Column("quantity", sa.Float, nullable=False, server_default="0"),
        sa.Column("location", sa.String(255)),
        sa.Column("last_updated", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("allocations", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.CheckConstraint("quantity >= 0", name="ck_yarn_inventory_qty_positive"),
    )
    op.create_index("ix_yarn_inventory_identity", "yarn_inventory", ["yarn_name", "lot_number", "location"])

    # 2. Customer sheets (embedded orders)
    op.create_table(
        "customer_sheets",
        sa.Column("customer_id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("orders", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 3. Customer orders (child records)
    op.create_table(
        "customer_orders",
        sa.Column("order_id", sa.String(64), primary_key=True),
        sa.Column("customer_id", sa.String(64), sa.ForeignKey("customer_sheets.customer_id"), nullable=False),
        sa.Column("material", sa.String(255)),
        sa.Column("required_qty", sa.Float, server_default="0"),
        sa.Column("remaining_qty", sa.Float, server_default="0"),
        sa.Column("yarn_allocations", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_customer_orders_customer", "customer_orders", ["customer_id"])


def downgrade() -> None:
    op.drop_index("ix_customer_orders_customer", table_name="customer_orders")
    op.drop_table("customer_orders")
    op.drop_table("customer_sheets")
    op.drop_index("ix_yarn_inventory_identity", table_name="yarn_inventory")
    op.drop_table("yarn_inventory")
