"""Basket to order conversion.

Creating an order is one transaction: stock is re-validated and reserved,
the order with its item snapshots and creation history row is written,
and the basket is deleted. If anything fails nothing is kept, the basket
included.
"""

import structlog

from storefront.application.basket_service import quote_basket
from storefront.application.notifications import dispatch_events, get_notification_sender
from storefront.application.ports import NotificationSender
from storefront.application.shipping import FlatRateShippingPolicy, ShippingPolicy
from storefront.domain.base import new_id
from storefront.domain.entities import Order, OrderItem, Payment
from storefront.domain.exceptions import EmptyBasketError, InsufficientStockError, NotFoundError
from storefront.domain.value_objects import Address
from storefront.infrastructure.unit_of_work import SqlAlchemyUnitOfWork, UnitOfWorkFactory

logger = structlog.get_logger()


class CheckoutService:
    """Converts baskets into pending orders."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory | None = None,
        shipping_policy: ShippingPolicy | None = None,
        notifier: NotificationSender | None = None,
    ) -> None:
        self._uow_factory = uow_factory or SqlAlchemyUnitOfWork
        self.shipping_policy = shipping_policy or FlatRateShippingPolicy()
        self._notifier = notifier

    @property
    def notifier(self) -> NotificationSender:
        return self._notifier or get_notification_sender()

    async def create_order(
        self,
        basket_id: str,
        user_id: str,
        shipping_address: Address,
        billing_address: Address | None = None,
    ) -> Order:
        """Create a pending order from a basket.

        Args:
            basket_id: Basket to convert.
            user_id: Owner of the new order.
            shipping_address: Delivery address.
            billing_address: Billing address, defaults to the shipping address.

        Returns:
            The new order with status and payment status pending.

        Raises:
            NotFoundError: If the basket or one of its variants does not exist.
            EmptyBasketError: If the basket has no items.
            InsufficientStockError: If a line asks for more than is in stock.
        """
        async with self._uow_factory() as uow:
            basket = await uow.baskets.get(basket_id, lock=True)
            if basket is None:
                raise NotFoundError("Basket", basket_id)
            if basket.is_empty:
                raise EmptyBasketError(basket_id)

            quote = await quote_basket(uow, basket, self.shipping_policy, lock=True)
            for line in quote.lines:
                if line.item.quantity > line.variant.quantity_in_stock:
                    raise InsufficientStockError(
                        line.variant.id,
                        line.item.quantity,
                        line.variant.quantity_in_stock,
                    )

            items = [
                OrderItem(
                    id=new_id(),
                    order_id="",
                    product_id=line.variant.product_id,
                    variant_id=line.variant.id,
                    product_name=line.variant.product_name,
                    sku=line.variant.sku,
                    unit_price_cents=line.variant.price_cents,
                    quantity=line.item.quantity,
                    product_type=line.variant.product_type,
                    attributes=line.variant.attributes,
                )
                for line in quote.lines
            ]
            order, history = Order.create(
                user_id=user_id,
                items=items,
                shipping_address=shipping_address,
                billing_address=billing_address,
                shipping_cents=quote.shipping_cents,
                currency=quote.currency,
            )

            for item in order.items:
                await uow.variants.reserve_stock(item.variant_id, item.quantity)

            # A provisional basket transaction is only kept when it charges the final total
            adopted = None
            if basket.payment_transaction_id and basket.payment_amount_cents == order.total_cents:
                adopted = Payment(
                    id=new_id(),
                    order_id=order.id,
                    payment_transaction_id=basket.payment_transaction_id,
                    client_secret=basket.client_secret,
                    amount_cents=order.total_cents,
                    currency=order.currency,
                )
                order.attach_transaction(adopted.payment_transaction_id)

            await uow.orders.add(order)
            await uow.orders.add_history(history)
            if adopted is not None:
                await uow.payments.add(adopted)
            await uow.baskets.delete(basket.id)

        await dispatch_events(order.collect_events(), self.notifier)
        logger.info(
            "Order created",
            order_id=order.id,
            order_number=order.order_number,
            user_id=user_id,
            total_cents=order.total_cents,
            item_count=len(order.items),
            adopted_transaction=adopted is not None,
        )
        return order


# Global service instance
_checkout_service: CheckoutService | None = None


def get_checkout_service() -> CheckoutService:
    """Get or create the checkout service instance."""
    global _checkout_service
    if _checkout_service is None:
        _checkout_service = CheckoutService()
    return _checkout_service
