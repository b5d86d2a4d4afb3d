"""orders and payments

Baseline: templates, orders, order items, webhook ledger and the log tables.
New environments may also get these from SQLModel.metadata.create_all(engine)
at startup; this revision is for databases managed with alembic.

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel  # noqa: F401


revision: str = "0001_orders_and_payments"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "templates",
        sa.Column("id", sqlmodel.AutoString(length=36), primary_key=True),
        sa.Column("name", sqlmodel.AutoString(), nullable=False),
        sa.Column("type", sqlmodel.AutoString(), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_free", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_templates_is_active", "templates", ["is_active"])

    op.create_table(
        "orders",
        sa.Column("id", sqlmodel.AutoString(length=36), primary_key=True),
        sa.Column("order_number", sqlmodel.AutoString(length=50), nullable=False),
        sa.Column("user_id", sqlmodel.AutoString(length=64), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sqlmodel.AutoString(length=3), nullable=False),
        sa.Column("status", sqlmodel.AutoString(length=16), nullable=False),
        sa.Column("payment_reference", sqlmodel.AutoString(length=255), nullable=True),
        sa.Column("payment_method", sqlmodel.AutoString(length=16), nullable=True),
        sa.Column("payment_details", sa.JSON(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_payment_reference", "orders", ["payment_reference"])
    op.create_index("ix_orders_created_at", "orders", ["created_at"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sqlmodel.AutoString(length=36), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("template_id", sqlmodel.AutoString(length=36), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("template_name", sqlmodel.AutoString(), nullable=False),
        sa.Column("template_type", sqlmodel.AutoString(), nullable=False),
        sa.UniqueConstraint("order_id", "template_id", name="order_items_unique_template"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_template_id", "order_items", ["template_id"])

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sqlmodel.AutoString(length=255), nullable=False),
        sa.Column("event_type", sqlmodel.AutoString(length=100), nullable=False),
        sa.Column("order_id", sqlmodel.AutoString(length=36), nullable=True),
        sa.Column("payment_reference", sqlmodel.AutoString(length=255), nullable=True),
        sa.Column("outcome", sqlmodel.AutoString(length=16), nullable=False),
        sa.Column("received_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_payment_events_event_id", "payment_events", ["event_id"], unique=True)
    op.create_index("ix_payment_events_event_type", "payment_events", ["event_type"])
    op.create_index("ix_payment_events_order_id", "payment_events", ["order_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event", sqlmodel.AutoString(), nullable=False),
        sa.Column("order_id", sqlmodel.AutoString(), nullable=True),
        sa.Column("user_id", sqlmodel.AutoString(), nullable=True),
        sa.Column("detail", sqlmodel.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_logs_event", "audit_logs", ["event"])
    op.create_index("ix_audit_logs_order_id", "audit_logs", ["order_id"])
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])

    op.create_table(
        "error_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sqlmodel.AutoString(), nullable=True),
        sa.Column("endpoint", sqlmodel.AutoString(), nullable=True),
        sa.Column("method", sqlmodel.AutoString(), nullable=True),
        sa.Column("error_message", sqlmodel.AutoString(), nullable=True),
        sa.Column("stack_trace", sqlmodel.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_error_logs_user_id", "error_logs", ["user_id"])

    op.create_table(
        "security_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event", sqlmodel.AutoString(), nullable=False),
        sa.Column("ip", sqlmodel.AutoString(), nullable=True),
        sa.Column("endpoint", sqlmodel.AutoString(), nullable=True),
        sa.Column("detail", sqlmodel.AutoString(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_security_logs_event", "security_logs", ["event"])


def downgrade() -> None:
    # No-op: orders and the webhook ledger are financial records, never dropped
    pass
