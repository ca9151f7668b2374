"""Create basket, order, payment and webhook event tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def _address(prefix: str) -> list[sa.Column]:
    return [
        sa.Column(f"{prefix}_full_name", sa.String(255), nullable=False),
        sa.Column(f"{prefix}_line1", sa.String(255), nullable=False),
        sa.Column(f"{prefix}_line2", sa.String(255), nullable=True),
        sa.Column(f"{prefix}_city", sa.String(100), nullable=False),
        sa.Column(f"{prefix}_state", sa.String(100), nullable=True),
        sa.Column(f"{prefix}_postal_code", sa.String(20), nullable=False),
        sa.Column(f"{prefix}_country", sa.String(2), nullable=False),
        sa.Column(f"{prefix}_phone", sa.String(50), nullable=True),
    ]


def upgrade() -> None:
    """Create store tables."""
    # Inventory
    op.create_table(
        "product_variants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("product_id", sa.String(36), nullable=False, index=True),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(100), nullable=True),
        sa.Column("price_cents", sa.Integer, nullable=False),
        sa.Column("quantity_in_stock", sa.Integer, nullable=False, server_default="0"),
        sa.Column("product_type", sa.String(20), nullable=False, server_default="physical"),
        sa.Column("attributes", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.CheckConstraint("quantity_in_stock >= 0", name="ck_variant_stock_non_negative"),
    )

    # Baskets
    op.create_table(
        "baskets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_key", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("payment_transaction_id", sa.String(255), nullable=True),
        sa.Column("client_secret", sa.String(255), nullable=True),
        sa.Column("payment_amount_cents", sa.Integer, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_table(
        "basket_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "basket_id",
            sa.String(36),
            sa.ForeignKey("baskets.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("variant_id", sa.String(36), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.CheckConstraint("quantity > 0", name="ck_basket_item_quantity_positive"),
    )

    # Orders
    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_number", sa.String(32), nullable=False, unique=True),
        sa.Column("user_id", sa.String(100), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_transaction_id", sa.String(255), nullable=True, index=True),
        *_address("shipping"),
        *_address("billing"),
        sa.Column("subtotal_cents", sa.Integer, nullable=False),
        sa.Column("shipping_cents", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("tracking_number", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column(
            "order_date",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            index=True,
        ),
        *_timestamps(),
    )
    op.create_table(
        "order_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("variant_id", sa.String(36), nullable=True),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(100), nullable=True),
        sa.Column("unit_price_cents", sa.Integer, nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("line_total_cents", sa.Integer, nullable=False),
        sa.Column("product_type", sa.String(20), nullable=False, server_default="physical"),
        sa.Column("attributes", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_table(
        "order_status_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("from_status", sa.String(20), nullable=True),
        sa.Column("to_status", sa.String(20), nullable=False),
        sa.Column(
            "changed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_by", sa.String(100), nullable=False, server_default="system"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("tracking_number", sa.String(100), nullable=True),
        sa.Column("sequence", sa.Integer, nullable=False, server_default="0"),
    )

    # Payments
    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "order_id",
            sa.String(36),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("payment_transaction_id", sa.String(255), nullable=False, unique=True),
        sa.Column("amount_cents", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("client_secret", sa.String(255), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending", index=True),
        sa.Column("failure_reason", sa.Text, nullable=True),
        sa.Column("refunded_amount_cents", sa.Integer, nullable=False, server_default="0"),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint(
            "refunded_amount_cents <= amount_cents",
            name="ck_payment_refund_within_amount",
        ),
    )
    op.create_table(
        "payment_refunds",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "payment_id",
            sa.String(36),
            sa.ForeignKey("payments.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("gateway_refund_id", sa.String(255), nullable=False),
        sa.Column("amount_cents", sa.Integer, nullable=False),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("payment_id", "gateway_refund_id", name="uq_refund_gateway_id"),
    )
    op.create_table(
        "payment_webhook_events",
        sa.Column("event_id", sa.String(255), primary_key=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payment_transaction_id", sa.String(255), nullable=True, index=True),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column(
            "received_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    """Drop store tables."""
    op.drop_table("payment_webhook_events")
    op.drop_table("payment_refunds")
    op.drop_table("payments")
    op.drop_table("order_status_history")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("basket_items")
    op.drop_table("baskets")
    op.drop_table("product_variants")
