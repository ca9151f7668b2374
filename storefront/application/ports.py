"""Ports to external collaborators.

The application layer depends on these protocols; infrastructure
provides the adapters.
"""

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass
class GatewayTransaction:
    """Transaction as reported by the payment gateway."""

    id: str
    client_secret: str
    amount_cents: int
    status: str = "requires_payment_method"


@dataclass
class GatewayRefund:
    """Refund as reported by the payment gateway."""

    id: str
    amount_cents: int
    status: str = "succeeded"


@runtime_checkable
class PaymentGateway(Protocol):
    """External payment gateway.

    Every call may raise ``PaymentGatewayError``. Implementations pass the
    idempotency key through so a retried call never creates a second
    charge or refund.
    """

    async def create_transaction(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, Any],
        idempotency_key: str,
    ) -> GatewayTransaction: ...

    async def update_transaction(
        self,
        transaction_id: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> GatewayTransaction: ...

    async def refund(
        self,
        transaction_id: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> GatewayRefund: ...


@runtime_checkable
class NotificationSender(Protocol):
    """Delivers order status updates to the customer and to admins."""

    async def notify_order_status_changed(
        self,
        order_id: str,
        from_status: str,
        to_status: str,
        user_id: str | None = None,
    ) -> None: ...
