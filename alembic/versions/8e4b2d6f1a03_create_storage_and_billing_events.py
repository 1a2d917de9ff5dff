"""create storage_daily_rollups and billing_events

Revision ID: 8e4b2d6f1a03
Revises: 3c1f0a9d2b71
Create Date: 2026-09-29
"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "8e4b2d6f1a03"
down_revision: Union[str, Sequence[str], None] = "3c1f0a9d2b71"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "storage_daily_rollups",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("item_id", sa.Integer, sa.ForeignKey("items.id"), nullable=False),
        sa.Column("account_id", sa.Integer, nullable=False),
        sa.Column("sidemark_id", sa.Integer, nullable=True),
        sa.Column("rollup_date", sa.Date, nullable=False),
        sa.Column("class_id", sa.Integer, nullable=True),
        sa.Column("daily_rate", sa.Numeric(12, 4), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("tenant_id", "item_id", "rollup_date", name="uq_storage_rollups_item_date"),
    )
    op.create_index("ix_storage_rollups_date", "storage_daily_rollups", ["tenant_id", "rollup_date"])

    op.create_table(
        "billing_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("uuid", sa.String(26), nullable=False, unique=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("account_id", sa.Integer, sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("item_id", sa.Integer, nullable=True),
        sa.Column("sidemark_id", sa.Integer, nullable=True),
        sa.Column("class_id", sa.Integer, nullable=True),
        sa.Column("task_id", sa.Integer, nullable=True),
        sa.Column("shipment_id", sa.Integer, nullable=True),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("charge_type", sa.String(50), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("quantity", sa.Numeric(12, 4), nullable=False, server_default="1"),
        sa.Column("unit_rate", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("status", sa.String(10), nullable=False, server_default="unbilled"),
        sa.Column("has_rate_error", sa.Integer, nullable=False, server_default="0"),
        sa.Column("rate_error_message", sa.Text, nullable=True),
        sa.Column("invoice_id", sa.Integer, nullable=True),
        sa.Column("invoiced_at", sa.DateTime, nullable=True),
        sa.Column("occurred_at", sa.DateTime, nullable=False),
        sa.Column("metadata", sa.Text, nullable=False, server_default="{}"),
        sa.Column("dedup_key", sa.String(191), nullable=True, unique=True),
        sa.Column("created_by", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_billing_events_account_status", "billing_events", ["tenant_id", "account_id", "status"])
    op.create_index("ix_billing_events_task", "billing_events", ["tenant_id", "task_id"])
    op.create_index("ix_billing_events_shipment", "billing_events", ["tenant_id", "shipment_id"])
    op.create_index("ix_billing_events_invoice", "billing_events", ["invoice_id"])
    op.create_index("ix_billing_events_occurred_at", "billing_events", ["occurred_at"])


def downgrade() -> None:
    op.drop_index("ix_billing_events_occurred_at", table_name="billing_events")
    op.drop_index("ix_billing_events_invoice", table_name="billing_events")
    op.drop_index("ix_billing_events_shipment", table_name="billing_events")
    op.drop_index("ix_billing_events_task", table_name="billing_events")
    op.drop_index("ix_billing_events_account_status", table_name="billing_events")
    op.drop_table("billing_events")
    op.drop_index("ix_storage_rollups_date", table_name="storage_daily_rollups")
    op.drop_table("storage_daily_rollups")
