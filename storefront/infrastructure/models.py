"""SQLAlchemy models for database tables.

Provides ORM models for inventory, baskets, orders, payments, the order
status history and the gateway event log.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from storefront.infrastructure.database import Base

# JSONB on Postgres, plain JSON elsewhere
JsonType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Inventory Models
# ============================================================================


class ProductVariantModel(Base):
    """Product variant with price and stock level.

    Owned by the catalog; this service only reads it and moves stock.
    """

    __tablename__ = "product_variants"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    product_id = Column(String(36), nullable=False, index=True)
    product_name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=True)
    price_cents = Column(Integer, nullable=False)
    quantity_in_stock = Column(Integer, nullable=False, default=0)
    product_type = Column(String(20), nullable=False, default="physical")
    attributes = Column(JsonType, nullable=False, default=list)

    __table_args__ = (CheckConstraint("quantity_in_stock >= 0", name="ck_variant_stock_non_negative"),)

    def __repr__(self) -> str:
        return f"<ProductVariantModel(id={self.id}, stock={self.quantity_in_stock})>"


# ============================================================================
# Basket Models
# ============================================================================


class BasketModel(Base):
    """Shopping basket keyed by an opaque owner key."""

    __tablename__ = "baskets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    owner_key = Column(String(255), nullable=False, unique=True, index=True)
    payment_transaction_id = Column(String(255), nullable=True)
    client_secret = Column(String(255), nullable=True)
    payment_amount_cents = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    items = relationship(
        "BasketItemModel",
        back_populates="basket",
        cascade="all, delete-orphan",
        order_by="BasketItemModel.position",
        lazy="selectin",
    )


class BasketItemModel(Base):
    """Basket line."""

    __tablename__ = "basket_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    basket_id = Column(
        String(36),
        ForeignKey("baskets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(String(36), nullable=False)
    variant_id = Column(String(36), nullable=False)
    quantity = Column(Integer, nullable=False)
    position = Column(Integer, nullable=False, default=0)

    basket = relationship("BasketModel", back_populates="items")


# ============================================================================
# Order Models
# ============================================================================


class OrderModel(Base):
    """Order model for database persistence.

    ``version`` backs the optimistic concurrency check on every update.
    """

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_number = Column(String(32), nullable=False, unique=True)
    user_id = Column(String(100), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    payment_status = Column(String(20), nullable=False, default="pending")
    payment_transaction_id = Column(String(255), nullable=True, index=True)

    # Shipping address
    shipping_full_name = Column(String(255), nullable=False)
    shipping_line1 = Column(String(255), nullable=False)
    shipping_line2 = Column(String(255), nullable=True)
    shipping_city = Column(String(100), nullable=False)
    shipping_state = Column(String(100), nullable=True)
    shipping_postal_code = Column(String(20), nullable=False)
    shipping_country = Column(String(2), nullable=False)
    shipping_phone = Column(String(50), nullable=True)

    # Billing address
    billing_full_name = Column(String(255), nullable=False)
    billing_line1 = Column(String(255), nullable=False)
    billing_line2 = Column(String(255), nullable=True)
    billing_city = Column(String(100), nullable=False)
    billing_state = Column(String(100), nullable=True)
    billing_postal_code = Column(String(20), nullable=False)
    billing_country = Column(String(2), nullable=False)
    billing_phone = Column(String(50), nullable=True)

    # Totals
    subtotal_cents = Column(Integer, nullable=False)
    shipping_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    # Fulfilment
    tracking_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    order_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<OrderModel(id={self.id}, status={self.status})>"


class OrderItemModel(Base):
    """Order line snapshot, written once at order creation."""

    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(String(36), nullable=False)
    variant_id = Column(String(36), nullable=True)
    product_name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=True)
    unit_price_cents = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)
    line_total_cents = Column(Integer, nullable=False)
    product_type = Column(String(20), nullable=False, default="physical")
    attributes = Column(JsonType, nullable=False, default=list)
    position = Column(Integer, nullable=False, default=0)

    order = relationship("OrderModel", back_populates="items")


class OrderStatusHistoryModel(Base):
    """Append-only order status audit trail."""

    __tablename__ = "order_status_history"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    changed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_by = Column(String(100), nullable=False, default="system")
    notes = Column(Text, nullable=True)
    tracking_number = Column(String(100), nullable=True)
    # Insertion order; timestamps can collide within one request
    sequence = Column(Integer, nullable=False, default=0)


# ============================================================================
# Payment Models
# ============================================================================


class PaymentModel(Base):
    """Gateway transaction attached to an order."""

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payment_transaction_id = Column(String(255), nullable=False, unique=True)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    client_secret = Column(String(255), nullable=True)
    status = Column(String(30), nullable=False, default="pending", index=True)
    failure_reason = Column(Text, nullable=True)
    refunded_amount_cents = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint("refunded_amount_cents <= amount_cents", name="ck_payment_refund_within_amount"),
    )


class PaymentRefundModel(Base):
    """Refund issued against a payment."""

    __tablename__ = "payment_refunds"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    payment_id = Column(
        String(36),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    gateway_refund_id = Column(String(255), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (UniqueConstraint("payment_id", "gateway_refund_id", name="uq_refund_gateway_id"),)


class PaymentWebhookEventModel(Base):
    """Log of gateway notifications, unique per gateway event id."""

    __tablename__ = "payment_webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False)
    payment_transaction_id = Column(String(255), nullable=True, index=True)
    outcome = Column(String(20), nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
