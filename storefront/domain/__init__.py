"""Domain layer - Entities, value objects, state machines, domain events.

- **Entities**: Basket, Order, Payment and their line/audit rows
- **Value Objects**: Money, Address, OrderNumber
- **State Machines**: OrderStatus and PaymentStatus transition tables
- **Exceptions**: Business rule violations with error codes

Example usage:
    from storefront.domain import Order, OrderStatus

    entry = order.transition_to(OrderStatus.CONFIRMED, actor="system")
"""

from storefront.domain.entities import (
    Basket,
    BasketItem,
    Order,
    OrderItem,
    Payment,
    PaymentRefund,
    ProductType,
    ProductVariant,
    StatusHistoryEntry,
)
from storefront.domain.exceptions import DomainError
from storefront.domain.state_machines import OrderPaymentStatus, OrderStatus, PaymentStatus
from storefront.domain.value_objects import Address, Money

__all__ = [
    "Address",
    "Basket",
    "BasketItem",
    "DomainError",
    "Money",
    "Order",
    "OrderItem",
    "OrderPaymentStatus",
    "OrderStatus",
    "Payment",
    "PaymentRefund",
    "PaymentStatus",
    "ProductType",
    "ProductVariant",
    "StatusHistoryEntry",
]
