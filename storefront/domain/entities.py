"""Domain entities for baskets, orders and payments.

Entities enforce their own invariants: an order only moves through the
order state machine, a payment never refunds more than it captured and
a basket never holds a non-positive quantity.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from storefront.domain.base import AggregateRoot, Entity, new_id, utcnow
from storefront.domain.events import (
    OrderCreated,
    OrderStatusChanged,
    PaymentFailed,
    PaymentRefunded,
    PaymentSucceeded,
)
from storefront.domain.exceptions import (
    InvalidAmountError,
    InvalidQuantityError,
    NotRefundableError,
    TrackingRequiredError,
)
from storefront.domain.state_machines import (
    OrderPaymentStatus,
    OrderStatus,
    PaymentStatus,
    validate_order_transition,
    validate_payment_transition,
)
from storefront.domain.value_objects import Address, ItemAttribute, Money, OrderNumber

SYSTEM_ACTOR = "system"
SUPERSEDED_REASON = "superseded"


class ProductType(str, Enum):
    """Kind of product a variant belongs to."""

    PHYSICAL = "physical"
    DIGITAL = "digital"


# ============================================================================
# Inventory
# ============================================================================


@dataclass(kw_only=True, eq=False)
class ProductVariant(Entity):
    """Sellable variant as seen by the inventory port.

    Catalog management lives elsewhere; orders only read price and
    stock and move stock up or down.
    """

    product_id: str
    product_name: str
    price_cents: int
    quantity_in_stock: int
    product_type: ProductType = ProductType.PHYSICAL
    sku: str | None = None
    attributes: tuple[ItemAttribute, ...] = ()

    @property
    def is_digital(self) -> bool:
        return self.product_type == ProductType.DIGITAL


# ============================================================================
# Basket
# ============================================================================


@dataclass(kw_only=True, eq=False)
class BasketItem(Entity):
    """Line in a basket. Prices are resolved at conversion time."""

    product_id: str
    variant_id: str
    quantity: int


@dataclass(kw_only=True, eq=False)
class Basket(AggregateRoot):
    """Pre-order container of lines owned by a user or anonymous key.

    Attributes:
        owner_key: Opaque owner identifier (user id or anonymous token).
        items: Basket lines, in insertion order.
        payment_transaction_id: Provisional gateway transaction, if any.
        client_secret: Secret the client uses to pay that transaction.
        payment_amount_cents: Amount the provisional transaction was opened for.
    """

    owner_key: str
    items: list[BasketItem] = field(default_factory=list)
    payment_transaction_id: str | None = None
    client_secret: str | None = None
    payment_amount_cents: int | None = None

    @property
    def is_empty(self) -> bool:
        return not self.items

    def find_item(self, product_id: str, variant_id: str) -> BasketItem | None:
        """Find the line for a product variant."""
        for item in self.items:
            if item.product_id == product_id and item.variant_id == variant_id:
                return item
        return None

    def add_item(self, product_id: str, variant_id: str, quantity: int) -> BasketItem:
        """Add units of a variant, merging with an existing line.

        Raises:
            InvalidQuantityError: If quantity is not positive.
        """
        if quantity <= 0:
            raise InvalidQuantityError(quantity)

        item = self.find_item(product_id, variant_id)
        if item is None:
            item = BasketItem(
                id=new_id(),
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
            )
            self.items.append(item)
        else:
            item.quantity += quantity
        self._touch()
        return item

    def remove_item(self, product_id: str, variant_id: str, quantity: int = 1) -> None:
        """Remove units of a variant, dropping the line when it reaches zero.

        Raises:
            InvalidQuantityError: If quantity is not positive.
        """
        if quantity <= 0:
            raise InvalidQuantityError(quantity)

        item = self.find_item(product_id, variant_id)
        if item is None:
            return
        item.quantity -= quantity
        if item.quantity <= 0:
            self.items.remove(item)
        self._touch()

    def attach_transaction(self, transaction_id: str, client_secret: str, amount_cents: int) -> None:
        """Remember the provisional gateway transaction for this basket."""
        self.payment_transaction_id = transaction_id
        self.client_secret = client_secret
        self.payment_amount_cents = amount_cents
        self._touch()


# ============================================================================
# Order
# ============================================================================


@dataclass(kw_only=True, eq=False)
class OrderItem(Entity):
    """Immutable snapshot of a purchased variant."""

    order_id: str
    product_id: str
    variant_id: str | None
    product_name: str
    unit_price_cents: int
    quantity: int
    product_type: ProductType = ProductType.PHYSICAL
    sku: str | None = None
    attributes: tuple[ItemAttribute, ...] = ()

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    @property
    def is_digital(self) -> bool:
        return self.product_type == ProductType.DIGITAL


@dataclass(kw_only=True, eq=False)
class StatusHistoryEntry(Entity):
    """Append-only audit row for one order transition."""

    order_id: str
    from_status: OrderStatus | None
    to_status: OrderStatus
    updated_by: str = SYSTEM_ACTOR
    changed_at: datetime = field(default_factory=utcnow)
    notes: str | None = None
    tracking_number: str | None = None
    sequence: int = 0


@dataclass(kw_only=True, eq=False)
class Order(AggregateRoot):
    """Order aggregate.

    Status changes go through ``transition_to`` only, which validates the
    move against the order state machine and produces the matching
    history entry.
    """

    order_number: str
    user_id: str
    status: OrderStatus = OrderStatus.PENDING
    payment_status: OrderPaymentStatus = OrderPaymentStatus.PENDING
    items: list[OrderItem] = field(default_factory=list)
    shipping_address: Address
    billing_address: Address
    subtotal_cents: int = 0
    shipping_cents: int = 0
    total_cents: int = 0
    currency: str = "USD"
    payment_transaction_id: str | None = None
    tracking_number: str | None = None
    notes: str | None = None
    order_date: datetime = field(default_factory=utcnow)

    @classmethod
    def create(
        cls,
        user_id: str,
        items: list[OrderItem],
        shipping_address: Address,
        billing_address: Address | None,
        shipping_cents: int,
        currency: str,
        order_id: str | None = None,
    ) -> tuple["Order", StatusHistoryEntry]:
        """Create a pending order and its creation history entry.

        Args:
            user_id: Owner of the order.
            items: Item snapshots (their order_id is rewritten).
            shipping_address: Delivery address.
            billing_address: Billing address, defaults to shipping.
            shipping_cents: Shipping cost.
            currency: Store currency.
            order_id: Optional pre-generated id.

        Returns:
            The order and the ``None -> pending`` history entry.
        """
        order_id = order_id or new_id()
        now = utcnow()
        subtotal = Money.zero(currency)
        for item in items:
            item.order_id = order_id
            subtotal = subtotal + Money(item.unit_price_cents, currency) * item.quantity
        total = subtotal + Money(shipping_cents, currency)

        order = cls(
            id=order_id,
            order_number=str(OrderNumber.generate(now)),
            user_id=user_id,
            items=items,
            shipping_address=shipping_address,
            billing_address=billing_address or shipping_address,
            subtotal_cents=subtotal.amount_cents,
            shipping_cents=shipping_cents,
            total_cents=total.amount_cents,
            currency=currency,
            order_date=now,
            created_at=now,
            updated_at=now,
        )
        order._record_event(
            OrderCreated(
                aggregate_id=order.id,
                aggregate_type="Order",
                order_number=order.order_number,
                user_id=user_id,
                total_cents=order.total_cents,
                currency=currency,
            )
        )
        history = StatusHistoryEntry(
            id=new_id(),
            order_id=order.id,
            from_status=None,
            to_status=OrderStatus.PENDING,
            updated_by=user_id,
            changed_at=now,
            notes="Order created",
            sequence=order.version,
        )
        return order, history

    @property
    def requires_shipping(self) -> bool:
        return any(not item.is_digital for item in self.items)

    @property
    def contains_digital_products(self) -> bool:
        return any(item.is_digital for item in self.items)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == OrderPaymentStatus.SUCCEEDED

    def is_owned_by(self, user_id: str | None) -> bool:
        return user_id is not None and self.user_id == user_id

    def find_item(self, item_id: str) -> OrderItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def transition_to(
        self,
        target: OrderStatus,
        actor: str,
        notes: str | None = None,
        tracking_number: str | None = None,
    ) -> StatusHistoryEntry:
        """Move the order to a new status.

        Args:
            target: Target status.
            actor: Who made the change (user id or "system").
            notes: Optional note stored on the history row.
            tracking_number: Tracking number, required when shipping unless
                one was already amended onto the order.

        Returns:
            History entry describing the transition.

        Raises:
            InvalidStateTransitionError: If the move is not in the table.
            TrackingRequiredError: If shipping without any tracking number.
        """
        validate_order_transition(self.id, self.status, target)

        tracking = (tracking_number or "").strip() or None
        if target.requires_tracking() and not (tracking or self.tracking_number):
            raise TrackingRequiredError(self.id)
        if tracking:
            self.tracking_number = tracking

        previous = self.status
        self.status = target
        self._touch()

        entry = StatusHistoryEntry(
            id=new_id(),
            order_id=self.id,
            from_status=previous,
            to_status=target,
            updated_by=actor,
            changed_at=self.updated_at,
            notes=notes,
            tracking_number=self.tracking_number if target.requires_tracking() else tracking,
            sequence=self.version,
        )
        self._record_event(
            OrderStatusChanged(
                aggregate_id=self.id,
                aggregate_type="Order",
                user_id=self.user_id,
                from_status=previous.value,
                to_status=target.value,
                actor=actor,
                tracking_number=entry.tracking_number,
            )
        )
        return entry

    def amend_tracking(self, tracking_number: str) -> None:
        """Replace the tracking number without changing status.

        Raises:
            TrackingRequiredError: If the new value is blank.
        """
        tracking = tracking_number.strip()
        if not tracking:
            raise TrackingRequiredError(self.id)
        self.tracking_number = tracking
        self._touch()

    def set_notes(self, notes: str | None) -> None:
        self.notes = notes
        self._touch()

    def set_payment_status(self, payment_status: OrderPaymentStatus) -> None:
        if self.payment_status != payment_status:
            self.payment_status = payment_status
            self._touch()

    def attach_transaction(self, transaction_id: str) -> None:
        if self.payment_transaction_id != transaction_id:
            self.payment_transaction_id = transaction_id
            self._touch()


# ============================================================================
# Payment
# ============================================================================


@dataclass(kw_only=True, eq=False)
class Payment(AggregateRoot):
    """One gateway transaction for an order.

    ``payment_transaction_id`` is unique across payments and doubles as
    the idempotency key for gateway notifications.
    """

    order_id: str
    payment_transaction_id: str
    amount_cents: int
    currency: str = "USD"
    client_secret: str | None = None
    status: PaymentStatus = PaymentStatus.PENDING
    failure_reason: str | None = None
    refunded_amount_cents: int = 0
    processed_at: datetime | None = None

    @property
    def refundable_amount_cents(self) -> int:
        return self.amount_cents - self.refunded_amount_cents

    def mark_succeeded(self) -> bool:
        """Record a successful charge.

        Returns:
            False if the payment had already succeeded (a replay).
        """
        if self.status.has_succeeded():
            return False
        validate_payment_transition(self.id, self.status, PaymentStatus.SUCCEEDED)
        self.status = PaymentStatus.SUCCEEDED
        self.failure_reason = None
        self.processed_at = utcnow()
        self._touch()
        self._record_event(
            PaymentSucceeded(
                aggregate_id=self.id,
                aggregate_type="Payment",
                order_id=self.order_id,
                payment_transaction_id=self.payment_transaction_id,
                amount_cents=self.amount_cents,
            )
        )
        return True

    def mark_failed(self, reason: str | None) -> bool:
        """Record a failed charge.

        A failure arriving after a success never downgrades the payment.

        Returns:
            False if nothing changed.
        """
        if self.status != PaymentStatus.PENDING:
            return False
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason
        self.processed_at = utcnow()
        self._touch()
        self._record_event(
            PaymentFailed(
                aggregate_id=self.id,
                aggregate_type="Payment",
                order_id=self.order_id,
                payment_transaction_id=self.payment_transaction_id,
                reason=reason,
            )
        )
        return True

    def supersede(self) -> None:
        """Retire a pending payment replaced by a newer transaction."""
        if self.status == PaymentStatus.PENDING:
            self.status = PaymentStatus.FAILED
            self.failure_reason = SUPERSEDED_REASON
            self._touch()

    def ensure_refundable(self, amount_cents: int | None) -> int:
        """Validate a refund request.

        Args:
            amount_cents: Requested amount, or None for the whole remainder.

        Returns:
            The amount that would be refunded.

        Raises:
            NotRefundableError: If the payment never succeeded or is fully refunded.
            InvalidAmountError: If the amount is not positive or above the remainder.
        """
        if not self.status.is_refundable():
            raise NotRefundableError(self.id, self.status.value)
        remaining = self.refundable_amount_cents
        amount = remaining if amount_cents is None else amount_cents
        if amount <= 0 or amount > remaining:
            raise InvalidAmountError(amount, remaining)
        return amount

    def apply_refund(self, amount_cents: int) -> None:
        """Apply a refund the gateway has already accepted."""
        amount = self.ensure_refundable(amount_cents)
        self.refunded_amount_cents += amount
        target = (
            PaymentStatus.REFUNDED
            if self.refundable_amount_cents == 0
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        validate_payment_transition(self.id, self.status, target)
        self.status = target
        self._touch()
        self._record_event(
            PaymentRefunded(
                aggregate_id=self.id,
                aggregate_type="Payment",
                order_id=self.order_id,
                amount_cents=amount,
                refunded_total_cents=self.refunded_amount_cents,
                fully_refunded=target == PaymentStatus.REFUNDED,
            )
        )


@dataclass(kw_only=True, eq=False)
class PaymentRefund(Entity):
    """Audit row for one refund issued against a payment."""

    payment_id: str
    gateway_refund_id: str
    amount_cents: int
    created_by: str
    reason: str | None = None
    created_at: datetime = field(default_factory=utcnow)
