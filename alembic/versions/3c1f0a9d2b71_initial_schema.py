"""initial schema

Revision ID: 3c1f0a9d2b71
Revises:
Create Date: 2026-09-28
"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "3c1f0a9d2b71"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("free_storage_days", sa.Integer, nullable=False, server_default="0"),
        sa.Column("storage_billing_day", sa.Integer, nullable=False, server_default="1"),
        sa.Column("global_rate_adjust_pct", sa.Numeric(7, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_accounts_tenant_id", "accounts", ["tenant_id"])

    op.create_table(
        "item_classes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.UniqueConstraint("tenant_id", "code", name="uq_item_classes_tenant_code"),
    )

    op.create_table(
        "items",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("account_id", sa.Integer, sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("sidemark_id", sa.Integer, nullable=True),
        sa.Column("class_id", sa.Integer, sa.ForeignKey("item_classes.id"), nullable=True),
        sa.Column("item_code", sa.String(50), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("received_date", sa.Date, nullable=True),
        sa.Column("released_date", sa.Date, nullable=True),
    )
    op.create_index("ix_items_tenant_status", "items", ["tenant_id", "status"])

    op.create_table(
        "task_items",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("task_id", sa.Integer, nullable=False),
        sa.Column("item_id", sa.Integer, sa.ForeignKey("items.id"), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 4), nullable=True),
    )
    op.create_index("ix_task_items_task", "task_items", ["tenant_id", "task_id"])

    op.create_table(
        "shipment_items",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("shipment_id", sa.Integer, nullable=False),
        sa.Column("item_id", sa.Integer, sa.ForeignKey("items.id"), nullable=True),
        sa.Column("expected_class_id", sa.Integer, sa.ForeignKey("item_classes.id"), nullable=True),
        sa.Column("expected_quantity", sa.Numeric(12, 4), nullable=True),
        sa.Column("actual_quantity", sa.Numeric(12, 4), nullable=True),
    )
    op.create_index("ix_shipment_items_shipment", "shipment_items", ["tenant_id", "shipment_id"])

    op.create_table(
        "service_rates",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("service_code", sa.String(50), nullable=False),
        sa.Column("class_code", sa.String(20), nullable=True),
        sa.Column("service_name", sa.String(255), nullable=False),
        sa.Column("billing_unit", sa.String(10), nullable=False, server_default="Item"),
        sa.Column("service_time_minutes", sa.Integer, nullable=True),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("taxable", sa.Integer, nullable=False, server_default="1"),
        sa.Column("uses_class_pricing", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Integer, nullable=False, server_default="1"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_service_rates_lookup", "service_rates", ["tenant_id", "service_code", "class_code", "is_active"])


def downgrade() -> None:
    op.drop_index("ix_service_rates_lookup", table_name="service_rates")
    op.drop_table("service_rates")
    op.drop_index("ix_shipment_items_shipment", table_name="shipment_items")
    op.drop_table("shipment_items")
    op.drop_index("ix_task_items_task", table_name="task_items")
    op.drop_table("task_items")
    op.drop_index("ix_items_tenant_status", table_name="items")
    op.drop_table("items")
    op.drop_table("item_classes")
    op.drop_index("ix_accounts_tenant_id", table_name="accounts")
    op.drop_table("accounts")
