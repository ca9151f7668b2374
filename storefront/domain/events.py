"""Domain events emitted by orders and payments.

Events are recorded on the aggregate during a use case and dispatched
after the unit of work commits.
"""

from dataclasses import dataclass
from typing import Any, ClassVar

from storefront.domain.base import DomainEvent


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Emitted when a basket is converted into an order."""

    event_type: ClassVar[str] = "order.created"

    order_number: str = ""
    user_id: str = ""
    total_cents: int = 0
    currency: str = "USD"

    def _payload(self) -> dict[str, Any]:
        return {
            "order_number": self.order_number,
            "user_id": self.user_id,
            "total_cents": self.total_cents,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Emitted on every successful order state-machine transition."""

    event_type: ClassVar[str] = "order.status_changed"

    user_id: str = ""
    from_status: str = ""
    to_status: str = ""
    actor: str = ""
    tracking_number: str | None = None

    def _payload(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor": self.actor,
            "tracking_number": self.tracking_number,
        }


@dataclass(frozen=True)
class PaymentSucceeded(DomainEvent):
    """Emitted when the gateway confirms a charge."""

    event_type: ClassVar[str] = "payment.succeeded"

    order_id: str = ""
    payment_transaction_id: str = ""
    amount_cents: int = 0

    def _payload(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "payment_transaction_id": self.payment_transaction_id,
            "amount_cents": self.amount_cents,
        }


@dataclass(frozen=True)
class PaymentFailed(DomainEvent):
    """Emitted when the gateway reports a declined or failed charge."""

    event_type: ClassVar[str] = "payment.failed"

    order_id: str = ""
    payment_transaction_id: str = ""
    reason: str | None = None

    def _payload(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "payment_transaction_id": self.payment_transaction_id,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class PaymentRefunded(DomainEvent):
    """Emitted after a (partial) refund is applied."""

    event_type: ClassVar[str] = "payment.refunded"

    order_id: str = ""
    amount_cents: int = 0
    refunded_total_cents: int = 0
    fully_refunded: bool = False

    def _payload(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "refunded_total_cents": self.refunded_total_cents,
            "fully_refunded": self.fully_refunded,
        }
