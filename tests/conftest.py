"""Shared fixtures.

Service tests run against a throwaway SQLite database (aiosqlite) and a
fake payment gateway that honours idempotency keys like the real one.
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from sqlalchemy.pool import NullPool

from storefront.application.basket_service import BasketService
from storefront.application.checkout_service import CheckoutService
from storefront.application.notifications import set_notification_sender
from storefront.application.ports import GatewayRefund, GatewayTransaction
from storefront.application.webhook_service import WebhookSignatureVerifier
from storefront.domain.base import new_id
from storefront.domain.entities import Order, ProductType, ProductVariant
from storefront.domain.exceptions import PaymentGatewayError
from storefront.domain.value_objects import Address, ItemAttribute
from storefront.infrastructure import database
from storefront.infrastructure.gateway_client import set_payment_gateway
from storefront.infrastructure.unit_of_work import SqlAlchemyUnitOfWork


# ============================================================================
# Collaborator Fakes
# ============================================================================


class FakeGateway:
    """In-memory payment gateway.

    A repeated idempotency key returns the original result. ``error``
    makes every call fail; ``before_return`` runs once inside the next
    create call, after the transaction exists at the gateway.
    """

    def __init__(self) -> None:
        self.transactions: dict[str, GatewayTransaction] = {}
        self.refunds: list[GatewayRefund] = []
        self.calls: list[tuple[str, str]] = []
        self.metadata: dict[str, dict[str, Any]] = {}
        self._by_key: dict[str, Any] = {}
        self.error: PaymentGatewayError | None = None
        self.before_return: Callable[[], Awaitable[None]] | None = None

    def _check(self, operation: str, idempotency_key: str) -> None:
        self.calls.append((operation, idempotency_key))
        if self.error is not None:
            raise self.error

    async def create_transaction(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict[str, Any],
        idempotency_key: str,
    ) -> GatewayTransaction:
        self._check("create", idempotency_key)
        txn = self._by_key.get(idempotency_key)
        if txn is None:
            txn_id = f"txn_{len(self.transactions) + 1}"
            txn = GatewayTransaction(
                id=txn_id,
                client_secret=f"{txn_id}_secret",
                amount_cents=amount_cents,
            )
            self.transactions[txn_id] = txn
            self.metadata[txn_id] = metadata
            self._by_key[idempotency_key] = txn
        if self.before_return is not None:
            hook, self.before_return = self.before_return, None
            await hook()
        return txn

    async def update_transaction(
        self,
        transaction_id: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> GatewayTransaction:
        self._check("update", idempotency_key)
        txn = self.transactions[transaction_id]
        txn.amount_cents = amount_cents
        return txn

    async def refund(
        self,
        transaction_id: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> GatewayRefund:
        self._check("refund", idempotency_key)
        refund = self._by_key.get(idempotency_key)
        if refund is None:
            refund = GatewayRefund(id=f"re_{len(self.refunds) + 1}", amount_cents=amount_cents)
            self.refunds.append(refund)
            self._by_key[idempotency_key] = refund
        return refund

    def operations(self, name: str) -> list[str]:
        return [key for op, key in self.calls if op == name]


class RecordingNotifier:
    """Notification sender that remembers what it was asked to send."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = fail

    async def notify_order_status_changed(
        self,
        order_id: str,
        from_status: str,
        to_status: str,
        user_id: str | None = None,
    ) -> None:
        if self.fail:
            raise RuntimeError("notification service unavailable")
        self.sent.append((order_id, from_status, to_status))


@pytest.fixture
def gateway() -> FakeGateway:
    """Install a fake payment gateway."""
    fake = FakeGateway()
    set_payment_gateway(fake)
    yield fake
    set_payment_gateway(None)


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Install a recording notification sender."""
    sender = RecordingNotifier()
    set_notification_sender(sender)
    yield sender
    set_notification_sender(None)


@pytest.fixture
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail=True)


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path}/store.db"


@pytest.fixture
async def db(database_url: str):
    """Fresh schema on a per-test SQLite database."""
    engine = database.configure_engine(database_url, poolclass=NullPool)
    await database.create_all()
    yield engine
    await engine.dispose()


# ============================================================================
# Sample Data
# ============================================================================


def make_address(**overrides: Any) -> Address:
    """Create a shipping address."""
    fields = {
        "full_name": "Dana Reyes",
        "line1": "221 Harbor Street",
        "city": "Portland",
        "state": "OR",
        "postal_code": "97201",
        "country": "US",
    }
    fields.update(overrides)
    return Address(**fields)


async def create_variant(
    price_cents: int = 2500,
    stock: int = 10,
    product_type: ProductType = ProductType.PHYSICAL,
    name: str = "Canvas Tote",
) -> ProductVariant:
    """Insert a product variant."""
    variant = ProductVariant(
        id=new_id(),
        product_id=new_id(),
        product_name=name,
        sku=f"SKU-{new_id()[:8]}",
        price_cents=price_cents,
        quantity_in_stock=stock,
        product_type=product_type,
        attributes=(ItemAttribute(name="colour", value="natural"),),
    )
    async with SqlAlchemyUnitOfWork() as uow:
        await uow.variants.add(variant)
    return variant


async def stock_of(variant_id: str) -> int:
    async with SqlAlchemyUnitOfWork() as uow:
        return await uow.variants.get_stock(variant_id)


async def create_order(
    user_id: str,
    lines: list[tuple[ProductVariant, int]],
    notifier: RecordingNotifier | None = None,
) -> Order:
    """Fill the user's basket and convert it into an order."""
    baskets = BasketService()
    for variant, quantity in lines:
        basket, _ = await baskets.add_item(user_id, variant.product_id, variant.id, quantity)
    checkout = CheckoutService(notifier=notifier or RecordingNotifier())
    return await checkout.create_order(basket.id, user_id, make_address())


@pytest.fixture
def address() -> Address:
    return make_address()


@pytest.fixture
def variant_factory() -> Callable[..., Awaitable[ProductVariant]]:
    return create_variant


@pytest.fixture
def order_factory() -> Callable[..., Awaitable[Order]]:
    return create_order


@pytest.fixture
def stock_reader() -> Callable[[str], Awaitable[int]]:
    return stock_of


# ============================================================================
# Gateway Notifications
# ============================================================================


def make_event(
    event_type: str,
    transaction_id: str | None,
    event_id: str | None = None,
    amount: int | None = None,
    order_id: str | None = None,
    failure_message: str | None = None,
) -> bytes:
    """Build a raw gateway notification body."""
    obj: dict[str, Any] = {"id": transaction_id, "object": "payment_intent"}
    if amount is not None:
        obj["amount"] = amount
        obj["currency"] = "usd"
    if order_id is not None:
        obj["metadata"] = {"order_id": order_id}
    if failure_message is not None:
        obj["last_payment_error"] = {"message": failure_message}
    body = {
        "id": event_id or f"evt_{new_id()[:12]}",
        "type": event_type,
        "data": {"object": obj},
    }
    return json.dumps(body).encode()


@pytest.fixture
def event_factory() -> Callable[..., bytes]:
    return make_event


@pytest.fixture
def sign() -> Callable[[bytes], str]:
    """Sign a body with the configured webhook secret."""
    return WebhookSignatureVerifier().sign
