"""Tests for the order service."""

import asyncio

import pytest

from storefront.application.access import Actor
from storefront.application.order_service import OrderService
from storefront.domain.entities import ProductType
from storefront.domain.exceptions import (
    ConcurrentModificationError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    TrackingRequiredError,
)
from storefront.domain.state_machines import OrderPaymentStatus, OrderStatus
from storefront.infrastructure.unit_of_work import SqlAlchemyUnitOfWork

ADMIN = Actor(user_id="admin-1", is_admin=True)
CUSTOMER = Actor(user_id="user-1")


@pytest.fixture
def service(db, notifier) -> OrderService:
    return OrderService(notifier=notifier)


async def advance(service: OrderService, order_id: str, *statuses: OrderStatus) -> None:
    for status in statuses:
        tracking = "1Z999" if status == OrderStatus.SHIPPED else None
        await service.transition(order_id, status, ADMIN, tracking_number=tracking)


# ============================================================================
# Transitions
# ============================================================================


class TestTransition:
    """Tests for OrderService.transition."""

    async def test_confirm_writes_history_and_notifies(
        self, service, variant_factory, order_factory, notifier
    ) -> None:
        """A transition updates the order, appends history and notifies."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])

        updated = await service.transition(order.id, OrderStatus.CONFIRMED, ADMIN, notes="Paid by phone")

        assert updated.status == OrderStatus.CONFIRMED
        history = await service.get_history(order.id, ADMIN)
        assert [h.to_status for h in history] == [OrderStatus.PENDING, OrderStatus.CONFIRMED]
        assert history[-1].updated_by == "admin-1"
        assert history[-1].notes == "Paid by phone"
        assert notifier.sent == [(order.id, "pending", "confirmed")]

    async def test_pending_to_delivered_rejected(self, service, variant_factory, order_factory) -> None:
        """Skipping straight to delivered fails and changes nothing."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])

        with pytest.raises(InvalidStateTransitionError):
            await service.transition(order.id, OrderStatus.DELIVERED, ADMIN)

        stored = await service.get_order(order.id, ADMIN)
        assert stored.status == OrderStatus.PENDING
        assert len(await service.get_history(order.id, ADMIN)) == 1

    async def test_shipping_requires_tracking(self, service, variant_factory, order_factory) -> None:
        """A processing order cannot ship without a tracking number."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])
        await advance(service, order.id, OrderStatus.CONFIRMED, OrderStatus.PROCESSING)

        with pytest.raises(TrackingRequiredError):
            await service.transition(order.id, OrderStatus.SHIPPED, ADMIN)

        stored = await service.get_order(order.id, ADMIN)
        assert stored.status == OrderStatus.PROCESSING

    async def test_shipping_with_tracking(self, service, variant_factory, order_factory) -> None:
        """Shipping stores the tracking number on the order and history."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])
        await advance(service, order.id, OrderStatus.CONFIRMED, OrderStatus.PROCESSING)

        shipped = await service.transition(
            order.id, OrderStatus.SHIPPED, ADMIN, tracking_number="1Z999"
        )

        assert shipped.status == OrderStatus.SHIPPED
        assert shipped.tracking_number == "1Z999"
        history = await service.get_history(order.id, ADMIN)
        assert history[-1].tracking_number == "1Z999"

    async def test_history_is_ordered(self, service, variant_factory, order_factory) -> None:
        """History reads back oldest first, one row per transition."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])
        await advance(
            service,
            order.id,
            OrderStatus.CONFIRMED,
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
        )

        history = await service.get_history(order.id, CUSTOMER)

        assert [(h.from_status, h.to_status) for h in history] == [
            (None, OrderStatus.PENDING),
            (OrderStatus.PENDING, OrderStatus.CONFIRMED),
            (OrderStatus.CONFIRMED, OrderStatus.PROCESSING),
            (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
            (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        ]

    async def test_concurrent_transitions_apply_once(
        self, service, variant_factory, order_factory, notifier
    ) -> None:
        """Racing confirmations of one order write a single history row."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])

        results = await asyncio.gather(
            *(service.transition(order.id, OrderStatus.CONFIRMED, ADMIN) for _ in range(3)),
            return_exceptions=True,
        )

        confirmed = [r for r in results if not isinstance(r, Exception)]
        assert len(confirmed) == 1
        for result in results:
            if isinstance(result, Exception):
                assert isinstance(
                    result, (ConcurrentModificationError, InvalidStateTransitionError)
                )
        history = await service.get_history(order.id, ADMIN)
        assert [h.to_status for h in history] == [OrderStatus.PENDING, OrderStatus.CONFIRMED]
        assert notifier.sent == [(order.id, "pending", "confirmed")]

    async def test_unknown_order(self, service) -> None:
        """Transitioning a missing order fails."""
        with pytest.raises(NotFoundError):
            await service.transition("missing", OrderStatus.CONFIRMED, ADMIN)

    async def test_failing_notifier_does_not_fail_transition(
        self, db, variant_factory, order_factory, failing_notifier
    ) -> None:
        """Notification errors are logged, the transition stands."""
        service = OrderService(notifier=failing_notifier)
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])

        updated = await service.transition(order.id, OrderStatus.CONFIRMED, ADMIN)

        assert updated.status == OrderStatus.CONFIRMED
        stored = await service.get_order(order.id, ADMIN)
        assert stored.status == OrderStatus.CONFIRMED


class TestCancel:
    """Tests for cancellation and stock release."""

    async def test_cancel_releases_stock(
        self, service, variant_factory, order_factory, stock_reader
    ) -> None:
        """Cancelling returns the ordered units to stock."""
        variant = await variant_factory(stock=10)
        order = await order_factory("user-1", [(variant, 2)])
        assert await stock_reader(variant.id) == 8

        cancelled = await service.cancel_order(order.id, CUSTOMER, reason="Changed my mind")

        assert cancelled.status == OrderStatus.CANCELLED
        assert await stock_reader(variant.id) == 10
        history = await service.get_history(order.id, CUSTOMER)
        assert history[-1].notes == "Changed my mind"
        assert history[-1].updated_by == "user-1"

    async def test_cancelled_is_terminal(self, service, variant_factory, order_factory) -> None:
        """A cancelled order cannot be reopened or cancelled again."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])
        await service.cancel_order(order.id, CUSTOMER)

        with pytest.raises(InvalidStateTransitionError):
            await service.transition(order.id, OrderStatus.CONFIRMED, ADMIN)
        with pytest.raises(InvalidStateTransitionError):
            await service.cancel_order(order.id, CUSTOMER)

    async def test_shipped_order_cannot_be_cancelled(
        self, service, variant_factory, order_factory, stock_reader
    ) -> None:
        """Once shipped, cancellation is rejected and stock stays reserved."""
        variant = await variant_factory(stock=10)
        order = await order_factory("user-1", [(variant, 1)])
        await advance(
            service, order.id, OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED
        )

        with pytest.raises(InvalidStateTransitionError):
            await service.cancel_order(order.id, CUSTOMER)
        assert await stock_reader(variant.id) == 9

    async def test_other_customer_cannot_cancel(self, service, variant_factory, order_factory) -> None:
        """Only the customer who placed the order can cancel it."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])

        with pytest.raises(ForbiddenError):
            await service.cancel_order(order.id, Actor(user_id="user-2"))

    async def test_admin_cannot_use_customer_cancel(
        self, service, variant_factory, order_factory
    ) -> None:
        """Admins cancel through transition, not on the customer's behalf."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])

        with pytest.raises(ForbiddenError):
            await service.cancel_order(order.id, ADMIN)

        assert (await service.get_order(order.id, ADMIN)).status == OrderStatus.PENDING

    async def test_customer_cancels_confirmed_order(
        self, service, variant_factory, order_factory
    ) -> None:
        """Confirmed orders can still be cancelled by the customer."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])
        await advance(service, order.id, OrderStatus.CONFIRMED)

        cancelled = await service.cancel_order(order.id, CUSTOMER)

        assert cancelled.status == OrderStatus.CANCELLED

    async def test_customer_cannot_cancel_processing_order(
        self, service, variant_factory, order_factory, stock_reader
    ) -> None:
        """Once processing starts, the customer can no longer cancel."""
        variant = await variant_factory(stock=10)
        order = await order_factory("user-1", [(variant, 1)])
        await advance(service, order.id, OrderStatus.CONFIRMED, OrderStatus.PROCESSING)

        with pytest.raises(InvalidStateTransitionError):
            await service.cancel_order(order.id, CUSTOMER)

        assert (await service.get_order(order.id, ADMIN)).status == OrderStatus.PROCESSING
        assert await stock_reader(variant.id) == 9
        assert len(await service.get_history(order.id, ADMIN)) == 3

    async def test_admin_cancels_processing_order(
        self, service, variant_factory, order_factory, stock_reader
    ) -> None:
        """Admins can still cancel a processing order through the state machine."""
        variant = await variant_factory(stock=10)
        order = await order_factory("user-1", [(variant, 1)])
        await advance(service, order.id, OrderStatus.CONFIRMED, OrderStatus.PROCESSING)

        cancelled = await service.transition(order.id, OrderStatus.CANCELLED, ADMIN)

        assert cancelled.status == OrderStatus.CANCELLED
        assert await stock_reader(variant.id) == 10


# ============================================================================
# Bulk Transitions
# ============================================================================


class TestBulkTransition:
    """Tests for OrderService.bulk_transition."""

    async def test_partial_failure(self, service, variant_factory, order_factory) -> None:
        """Each order succeeds or fails on its own."""
        variant = await variant_factory()
        confirmed = await order_factory("user-1", [(variant, 1)])
        pending = await order_factory("user-2", [(variant, 1)])
        await service.transition(confirmed.id, OrderStatus.CONFIRMED, ADMIN)

        results = await service.bulk_transition(
            [confirmed.id, pending.id, "missing"], OrderStatus.PROCESSING, ADMIN
        )

        assert [r.success for r in results] == [True, False, False]
        assert results[0].status == OrderStatus.PROCESSING
        assert results[1].error_code == "INVALID_TRANSITION"
        assert results[2].error_code == "NOT_FOUND"

        assert (await service.get_order(confirmed.id, ADMIN)).status == OrderStatus.PROCESSING
        assert (await service.get_order(pending.id, ADMIN)).status == OrderStatus.PENDING


# ============================================================================
# Amendments
# ============================================================================


class TestAmendments:
    """Tests for tracking and notes updates."""

    async def test_update_tracking_keeps_status(self, service, variant_factory, order_factory) -> None:
        """Amending tracking does not move the order or add history."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])

        updated = await service.update_tracking(order.id, "1Z111", ADMIN)

        assert updated.tracking_number == "1Z111"
        assert updated.status == OrderStatus.PENDING
        assert len(await service.get_history(order.id, ADMIN)) == 1

    async def test_blank_tracking_rejected(self, service, variant_factory, order_factory) -> None:
        """Tracking cannot be cleared."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])

        with pytest.raises(TrackingRequiredError):
            await service.update_tracking(order.id, "   ", ADMIN)

    async def test_update_notes(self, service, variant_factory, order_factory) -> None:
        """Notes are replaced."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])

        await service.update_notes(order.id, "Gift wrap", ADMIN)

        assert (await service.get_order(order.id, ADMIN)).notes == "Gift wrap"


# ============================================================================
# Reads
# ============================================================================


class TestReads:
    """Tests for order reads and access checks."""

    async def test_customer_sees_only_own_orders(self, service, variant_factory, order_factory) -> None:
        """Customers list their own orders; admins see everyone's."""
        variant = await variant_factory()
        mine = await order_factory("user-1", [(variant, 1)])
        await order_factory("user-2", [(variant, 1)])

        own = await service.list_orders(CUSTOMER)
        everyone = await service.list_orders(ADMIN)
        narrowed = await service.list_orders(ADMIN, user_id="user-2")

        assert [o.id for o in own.orders] == [mine.id]
        assert everyone.total == 2
        assert narrowed.total == 1
        assert narrowed.orders[0].user_id == "user-2"

    async def test_customer_cannot_widen_listing(self, service, variant_factory, order_factory) -> None:
        """A customer's user_id filter is ignored."""
        variant = await variant_factory()
        await order_factory("user-2", [(variant, 1)])

        page = await service.list_orders(CUSTOMER, user_id="user-2")

        assert page.total == 0

    async def test_filter_and_paginate(self, service, variant_factory, order_factory) -> None:
        """Listing filters by status and pages results."""
        variant = await variant_factory()
        first = await order_factory("user-1", [(variant, 1)])
        await order_factory("user-1", [(variant, 1)])
        await order_factory("user-1", [(variant, 1)])
        await service.transition(first.id, OrderStatus.CONFIRMED, ADMIN)

        confirmed = await service.list_orders(ADMIN, status=OrderStatus.CONFIRMED)
        page = await service.list_orders(ADMIN, page=1, page_size=2)

        assert [o.id for o in confirmed.orders] == [first.id]
        assert page.total == 3
        assert len(page.orders) == 2
        assert page.has_more

    async def test_other_customer_forbidden(self, service, variant_factory, order_factory) -> None:
        """Reading someone else's order is forbidden."""
        variant = await variant_factory()
        order = await order_factory("user-1", [(variant, 1)])

        with pytest.raises(ForbiddenError):
            await service.get_order(order.id, Actor(user_id="user-2"))
        with pytest.raises(ForbiddenError):
            await service.get_history(order.id, Actor(user_id="user-2"))


# ============================================================================
# Digital Downloads
# ============================================================================


async def mark_paid(order_id: str) -> None:
    async with SqlAlchemyUnitOfWork() as uow:
        order = await uow.orders.get(order_id, lock=True)
        version = order.version
        order.set_payment_status(OrderPaymentStatus.SUCCEEDED)
        await uow.orders.update(order, version)


class TestDownloadPermission:
    """Tests for the digital download check."""

    async def test_paid_digital_item_allowed(self, service, variant_factory, order_factory) -> None:
        """The owner may download a digital item once paid."""
        ebook = await variant_factory(product_type=ProductType.DIGITAL)
        order = await order_factory("user-1", [(ebook, 1)])
        await mark_paid(order.id)

        permission = await service.check_download_permission(order.id, order.items[0].id, CUSTOMER)

        assert permission.allowed

    async def test_unpaid_order_denied(self, service, variant_factory, order_factory) -> None:
        """Unpaid orders cannot be downloaded."""
        ebook = await variant_factory(product_type=ProductType.DIGITAL)
        order = await order_factory("user-1", [(ebook, 1)])

        permission = await service.check_download_permission(order.id, order.items[0].id, CUSTOMER)

        assert not permission.allowed
        assert permission.reason == "Order is not paid"

    async def test_physical_item_denied(self, service, variant_factory, order_factory) -> None:
        """Physical items have nothing to download."""
        tote = await variant_factory()
        order = await order_factory("user-1", [(tote, 1)])
        await mark_paid(order.id)

        permission = await service.check_download_permission(order.id, order.items[0].id, CUSTOMER)

        assert not permission.allowed
        assert permission.reason == "Item is not a digital product"

    async def test_other_user_denied(self, service, variant_factory, order_factory) -> None:
        """Only the buyer can download."""
        ebook = await variant_factory(product_type=ProductType.DIGITAL)
        order = await order_factory("user-1", [(ebook, 1)])
        await mark_paid(order.id)

        permission = await service.check_download_permission(
            order.id, order.items[0].id, Actor(user_id="user-2")
        )

        assert not permission.allowed

    async def test_unknown_item(self, service, variant_factory, order_factory) -> None:
        """An item that is not on the order is not found."""
        ebook = await variant_factory(product_type=ProductType.DIGITAL)
        order = await order_factory("user-1", [(ebook, 1)])

        with pytest.raises(NotFoundError):
            await service.check_download_permission(order.id, "missing", CUSTOMER)
