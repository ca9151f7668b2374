"""State machines for orders and payments.

Deterministic transition tables. An order only moves along the edges
listed in ``_ORDER_TRANSITIONS``; a payment only along
``_PAYMENT_TRANSITIONS``.
"""

from enum import Enum

from storefront.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Order State Machine
# ============================================================================


class OrderStatus(str, Enum):
    """Order fulfilment states.

    State diagram:
        PENDING ──────────────────────────────────► CANCELLED
          │                                             ▲
          │ payment succeeded / admin confirm           │
          ▼                                             │
        CONFIRMED ──────────────────────────────────────┤
          │                                             │
          │ start processing                            │
          ▼                                             │
        PROCESSING ─────────────────────────────────────┘
          │
          │ ship (tracking number required)
          ▼
        SHIPPED
          │
          │ deliver
          ▼
        DELIVERED
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _ORDER_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderStatus"]:
        """Get valid target states, in declaration order."""
        targets = _ORDER_TRANSITIONS.get(self, set())
        return [status for status in OrderStatus if status in targets]

    def is_cancellable(self) -> bool:
        """Check if order can still be cancelled."""
        return self.can_transition_to(OrderStatus.CANCELLED)

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return len(_ORDER_TRANSITIONS.get(self, set())) == 0

    def requires_tracking(self) -> bool:
        """Check if entering this state needs a tracking number."""
        return self == OrderStatus.SHIPPED


# Order state transitions (defined outside enum to avoid Enum restrictions)
_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),  # Terminal state
    OrderStatus.CANCELLED: set(),  # Terminal state
}


class OrderPaymentStatus(str, Enum):
    """Payment summary kept on the order itself."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


# ============================================================================
# Payment State Machine
# ============================================================================


class PaymentStatus(str, Enum):
    """Payment attempt states.

    State diagram:
        PENDING ─────────► FAILED ─────┐
          │                            │ late success
          │ succeeded                  ▼
          ▼                        SUCCEEDED
        SUCCEEDED ──────► PARTIALLY_REFUNDED ──────► REFUNDED
          │                                             ▲
          └─────────────────────────────────────────────┘
    """

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        """Check if transition to target state is valid."""
        return target in _PAYMENT_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["PaymentStatus"]:
        """Get valid target states, in declaration order."""
        targets = _PAYMENT_TRANSITIONS.get(self, set())
        return [status for status in PaymentStatus if status in targets]

    def has_succeeded(self) -> bool:
        """Check if money was captured at some point.

        Returns:
            True for succeeded and for (partially) refunded payments.
        """
        return self in {
            PaymentStatus.SUCCEEDED,
            PaymentStatus.PARTIALLY_REFUNDED,
            PaymentStatus.REFUNDED,
        }

    def is_refundable(self) -> bool:
        """Check if a refund can be issued against this payment."""
        return self in {PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED}


# Payment state transitions
_PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED},
    # A gateway may report success after an earlier decline on the same transaction
    PaymentStatus.FAILED: {PaymentStatus.SUCCEEDED},
    PaymentStatus.SUCCEEDED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.REFUNDED,
    },
    PaymentStatus.REFUNDED: set(),  # Terminal state
}


# ============================================================================
# Transition Validators
# ============================================================================


def validate_order_transition(
    order_id: str,
    current_status: OrderStatus,
    target_status: OrderStatus,
) -> None:
    """Validate and raise if order state transition is invalid.

    Args:
        order_id: Order identifier for error message.
        current_status: Current order status.
        target_status: Target order status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )


def validate_payment_transition(
    payment_id: str,
    current_status: PaymentStatus,
    target_status: PaymentStatus,
) -> None:
    """Validate and raise if payment state transition is invalid.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Payment",
            entity_id=payment_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
