"""Order application service.

Drives the order status state machine and the read side of orders:
- Transitions with one history row per change, in the same transaction
- Stock release on cancellation
- Bulk transitions, each order in its own transaction
- Tracking and notes amendments
- Listing, details, history and the digital download check
"""

from dataclasses import dataclass

import structlog

from storefront.application.access import Actor
from storefront.application.notifications import dispatch_events, get_notification_sender
from storefront.application.ports import NotificationSender
from storefront.domain.entities import Order, StatusHistoryEntry
from storefront.domain.exceptions import (
    DomainError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
)
from storefront.domain.state_machines import OrderStatus
from storefront.infrastructure.unit_of_work import SqlAlchemyUnitOfWork, UnitOfWorkFactory

logger = structlog.get_logger()

# Statuses a customer may still cancel from
CUSTOMER_CANCELLABLE = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class OrderPage:
    """One page of orders."""

    orders: list[Order]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


@dataclass
class BulkTransitionResult:
    """Outcome of one order within a bulk transition."""

    order_id: str
    success: bool
    status: OrderStatus | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass
class DownloadPermission:
    """Whether the caller may download a digital order item."""

    allowed: bool
    reason: str | None = None


# ============================================================================
# Order Service
# ============================================================================


class OrderService:
    """Service for order lifecycle operations."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory | None = None,
        notifier: NotificationSender | None = None,
    ) -> None:
        """Initialize order service.

        Args:
            uow_factory: Factory for units of work.
            notifier: Notification sender (defaults to the configured one).
        """
        self._uow_factory = uow_factory or SqlAlchemyUnitOfWork
        self._notifier = notifier

    @property
    def notifier(self) -> NotificationSender:
        return self._notifier or get_notification_sender()

    # ------------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------------

    async def get_order(self, order_id: str, actor: Actor) -> Order:
        """Get an order the caller may see.

        Raises:
            NotFoundError: If the order does not exist.
            ForbiddenError: If the caller is neither owner nor admin.
        """
        async with self._uow_factory() as uow:
            order = await uow.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        actor.ensure_can_view(order)
        return order

    async def list_orders(
        self,
        actor: Actor,
        status: OrderStatus | None = None,
        page: int = 1,
        page_size: int = 20,
        user_id: str | None = None,
    ) -> OrderPage:
        """List orders newest first.

        Customers only ever see their own orders. Admins see all orders and
        may narrow them to one user.
        """
        owner = user_id if actor.is_admin else actor.user_id
        async with self._uow_factory() as uow:
            orders, total = await uow.orders.list_orders(
                user_id=owner,
                status=status,
                offset=(page - 1) * page_size,
                limit=page_size,
            )
        return OrderPage(orders=orders, total=total, page=page, page_size=page_size)

    async def get_history(self, order_id: str, actor: Actor) -> list[StatusHistoryEntry]:
        """Get the status history of an order, oldest first."""
        async with self._uow_factory() as uow:
            order = await uow.orders.get(order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            actor.ensure_can_view(order)
            return await uow.orders.list_history(order_id)

    # ------------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------------

    async def transition(
        self,
        order_id: str,
        to_status: OrderStatus,
        actor: Actor,
        notes: str | None = None,
        tracking_number: str | None = None,
        from_statuses: frozenset[OrderStatus] | None = None,
    ) -> Order:
        """Move an order to a new status.

        Args:
            order_id: Order to transition.
            to_status: Target status.
            actor: Caller; recorded on the history row.
            notes: Optional history note.
            tracking_number: Required when shipping unless already on the order.
            from_statuses: Narrows the statuses the move may start from.

        Returns:
            The updated order.

        Raises:
            NotFoundError: If the order does not exist.
            InvalidStateTransitionError: If the move is not allowed.
            TrackingRequiredError: If shipping without a tracking number.
            ConcurrentModificationError: If the order changed underneath.
        """
        async with self._uow_factory() as uow:
            order = await uow.orders.get(order_id, lock=True)
            if order is None:
                raise NotFoundError("Order", order_id)
            if from_statuses is not None and order.status not in from_statuses:
                raise InvalidStateTransitionError(
                    "Order",
                    order_id,
                    order.status.value,
                    to_status.value,
                )

            expected_version = order.version
            previous = order.status
            entry = order.transition_to(
                to_status,
                actor=actor.audit_name,
                notes=notes,
                tracking_number=tracking_number,
            )

            if to_status == OrderStatus.CANCELLED:
                for item in order.items:
                    if item.variant_id:
                        await uow.variants.release_stock(item.variant_id, item.quantity)

            await uow.orders.update(order, expected_version)
            await uow.orders.add_history(entry)

        logger.info(
            "Order status transitioned",
            order_id=order_id,
            from_status=previous.value,
            to_status=to_status.value,
            actor=actor.audit_name,
        )
        await dispatch_events(order.collect_events(), self.notifier)
        return order

    async def cancel_order(self, order_id: str, actor: Actor, reason: str | None = None) -> Order:
        """Cancel an order on behalf of the customer who placed it.

        Customers may cancel only before processing starts; later stages are
        cancelled by admins through ``transition``. Stock is released; no
        refund is issued.

        Raises:
            NotFoundError: If the order does not exist.
            ForbiddenError: If the caller did not place the order.
            InvalidStateTransitionError: If the order is past confirmation.
        """
        async with self._uow_factory() as uow:
            order = await uow.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        if not order.is_owned_by(actor.user_id):
            raise ForbiddenError("Only the customer who placed the order can cancel it")

        return await self.transition(
            order_id,
            OrderStatus.CANCELLED,
            actor,
            notes=reason or "Cancelled by customer",
            from_statuses=CUSTOMER_CANCELLABLE,
        )

    async def bulk_transition(
        self,
        order_ids: list[str],
        to_status: OrderStatus,
        actor: Actor,
        notes: str | None = None,
    ) -> list[BulkTransitionResult]:
        """Apply the same transition to several orders independently.

        A failing order does not undo the ones already transitioned.
        """
        results = []
        for order_id in order_ids:
            try:
                order = await self.transition(order_id, to_status, actor, notes=notes)
            except DomainError as e:
                logger.info(
                    "Bulk transition skipped order",
                    order_id=order_id,
                    to_status=to_status.value,
                    error_code=e.error_code,
                )
                results.append(
                    BulkTransitionResult(
                        order_id=order_id,
                        success=False,
                        error=e.message,
                        error_code=e.error_code,
                    )
                )
            else:
                results.append(
                    BulkTransitionResult(order_id=order_id, success=True, status=order.status)
                )
        return results

    # ------------------------------------------------------------------------
    # Amendments
    # ------------------------------------------------------------------------

    async def update_tracking(self, order_id: str, tracking_number: str, actor: Actor) -> Order:
        """Amend the tracking number without changing status."""
        async with self._uow_factory() as uow:
            order = await uow.orders.get(order_id, lock=True)
            if order is None:
                raise NotFoundError("Order", order_id)
            expected_version = order.version
            order.amend_tracking(tracking_number)
            await uow.orders.update(order, expected_version)

        logger.info(
            "Order tracking updated",
            order_id=order_id,
            tracking_number=order.tracking_number,
            actor=actor.audit_name,
        )
        return order

    async def update_notes(self, order_id: str, notes: str | None, actor: Actor) -> Order:
        """Replace the admin notes on an order."""
        async with self._uow_factory() as uow:
            order = await uow.orders.get(order_id, lock=True)
            if order is None:
                raise NotFoundError("Order", order_id)
            expected_version = order.version
            order.set_notes(notes)
            await uow.orders.update(order, expected_version)

        logger.info("Order notes updated", order_id=order_id, actor=actor.audit_name)
        return order

    # ------------------------------------------------------------------------
    # Digital downloads
    # ------------------------------------------------------------------------

    async def check_download_permission(
        self,
        order_id: str,
        item_id: str,
        actor: Actor,
    ) -> DownloadPermission:
        """Check whether the caller may download a digital item of an order."""
        async with self._uow_factory() as uow:
            order = await uow.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)

        item = order.find_item(item_id)
        if item is None:
            raise NotFoundError("OrderItem", item_id)
        if not order.is_owned_by(actor.user_id):
            return DownloadPermission(allowed=False, reason="Order belongs to another user")
        if not item.is_digital:
            return DownloadPermission(allowed=False, reason="Item is not a digital product")
        if order.status == OrderStatus.CANCELLED:
            return DownloadPermission(allowed=False, reason="Order is cancelled")
        if not order.is_paid:
            return DownloadPermission(allowed=False, reason="Order is not paid")
        return DownloadPermission(allowed=True)


# Global service instance
_order_service: OrderService | None = None


def get_order_service() -> OrderService:
    """Get or create the order service instance.

    Returns:
        OrderService instance.
    """
    global _order_service
    if _order_service is None:
        _order_service = OrderService()
    return _order_service
