"""Payment application service.

Negotiates gateway transactions for orders and baskets and issues
refunds. Gateway calls never run inside a database transaction: state
is read, the gateway is called, then the rows are locked again and
re-validated before anything is written.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.exc import IntegrityError

from storefront.application.access import Actor
from storefront.application.basket_service import quote_basket
from storefront.application.notifications import dispatch_events, get_notification_sender
from storefront.application.ports import NotificationSender, PaymentGateway
from storefront.application.shipping import FlatRateShippingPolicy, ShippingPolicy
from storefront.domain.base import new_id
from storefront.domain.entities import Order, Payment, PaymentRefund
from storefront.domain.exceptions import (
    AlreadyPaidError,
    ConcurrentModificationError,
    EmptyBasketError,
    InvalidStateTransitionError,
    NotFoundError,
)
from storefront.domain.state_machines import OrderPaymentStatus, OrderStatus, PaymentStatus
from storefront.infrastructure.gateway_client import get_payment_gateway
from storefront.infrastructure.unit_of_work import SqlAlchemyUnitOfWork, UnitOfWorkFactory

logger = structlog.get_logger()


@dataclass
class TransactionResult:
    """Transaction the client should pay.

    Attributes:
        transaction_id: Gateway transaction id.
        client_secret: Secret the client hands to the gateway.
        amount_cents: Amount the transaction charges.
        created: Whether a new gateway transaction was opened.
    """

    transaction_id: str
    client_secret: str | None
    amount_cents: int
    created: bool


@dataclass
class _OrderSnapshot:
    order_id: str
    total_cents: int
    currency: str
    pending: Payment | None
    attempt: int


def _ensure_payable(order: Order) -> None:
    """Raise unless the order can still take a payment."""
    if order.is_paid:
        raise AlreadyPaidError(order.id)
    if order.status == OrderStatus.CANCELLED:
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order.id,
            current_state=order.status.value,
            target_state="paid",
        )


class PaymentService:
    """Service for payment transactions and refunds."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory | None = None,
        gateway: PaymentGateway | None = None,
        shipping_policy: ShippingPolicy | None = None,
        notifier: NotificationSender | None = None,
    ) -> None:
        """Initialize payment service.

        Args:
            uow_factory: Factory for units of work.
            gateway: Payment gateway (defaults to the configured client).
            shipping_policy: Shipping policy used to price baskets.
            notifier: Notification sender (defaults to the configured one).
        """
        self._uow_factory = uow_factory or SqlAlchemyUnitOfWork
        self._gateway = gateway
        self.shipping_policy = shipping_policy or FlatRateShippingPolicy()
        self._notifier = notifier

    @property
    def gateway(self) -> PaymentGateway:
        return self._gateway or get_payment_gateway()

    @property
    def notifier(self) -> NotificationSender:
        return self._notifier or get_notification_sender()

    # ========================================================================
    # Orders
    # ========================================================================

    async def _snapshot_order(self, order_id: str, actor: Actor) -> _OrderSnapshot:
        async with self._uow_factory() as uow:
            order = await uow.orders.get(order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            actor.ensure_can_view(order)
            _ensure_payable(order)
            payments = await uow.payments.list_for_order(order_id)
            pending = await uow.payments.get_pending_for_order(order_id)
        return _OrderSnapshot(
            order_id=order.id,
            total_cents=order.total_cents,
            currency=order.currency,
            pending=pending,
            attempt=len(payments),
        )

    async def ensure_order_transaction(self, order_id: str, actor: Actor) -> TransactionResult:
        """Return the single active gateway transaction for an order.

        Reuses the pending transaction when it charges the current total;
        otherwise opens a new one and retires the old pending payment.

        Raises:
            NotFoundError: If the order does not exist.
            AlreadyPaidError: If the order has been paid.
            InvalidStateTransitionError: If the order is cancelled.
            PaymentGatewayError: If the gateway fails; nothing is written.
            ConcurrentModificationError: If a concurrent change could not be reconciled.
        """
        snapshot = await self._snapshot_order(order_id, actor)
        pending = snapshot.pending

        if pending is not None and pending.amount_cents == snapshot.total_cents:
            await self.gateway.update_transaction(
                pending.payment_transaction_id,
                snapshot.total_cents,
                idempotency_key=f"update-{pending.id}-{snapshot.total_cents}",
            )
            return await self._confirm_reused(order_id)

        txn = await self.gateway.create_transaction(
            snapshot.total_cents,
            snapshot.currency,
            metadata={"order_id": order_id},
            idempotency_key=f"order-{order_id}-{snapshot.total_cents}-{snapshot.attempt}",
        )

        try:
            async with self._uow_factory() as uow:
                order = await uow.orders.get(order_id, lock=True)
                _ensure_payable(order)
                expected_version = order.version

                current = await uow.payments.get_pending_for_order(order_id, lock=True)
                if current is not None and current.amount_cents == order.total_cents:
                    # Another request already stored a matching transaction
                    if current.payment_transaction_id != txn.id:
                        logger.info(
                            "Discarding concurrently created transaction",
                            order_id=order_id,
                            kept=current.payment_transaction_id,
                            discarded=txn.id,
                        )
                    return TransactionResult(
                        transaction_id=current.payment_transaction_id,
                        client_secret=current.client_secret,
                        amount_cents=current.amount_cents,
                        created=False,
                    )

                if current is not None:
                    current_version = current.version
                    current.supersede()
                    await uow.payments.update(current, current_version)
                    logger.info(
                        "Pending payment superseded",
                        order_id=order_id,
                        payment_id=current.id,
                        transaction_id=current.payment_transaction_id,
                    )

                payment = Payment(
                    id=new_id(),
                    order_id=order_id,
                    payment_transaction_id=txn.id,
                    client_secret=txn.client_secret,
                    amount_cents=order.total_cents,
                    currency=order.currency,
                )
                await uow.payments.add(payment)
                order.attach_transaction(txn.id)
                await uow.orders.update(order, expected_version)
        except IntegrityError as e:
            raise ConcurrentModificationError("Order", order_id) from e

        logger.info(
            "Payment transaction created",
            order_id=order_id,
            payment_id=payment.id,
            transaction_id=txn.id,
            amount_cents=payment.amount_cents,
        )
        return TransactionResult(
            transaction_id=txn.id,
            client_secret=txn.client_secret,
            amount_cents=payment.amount_cents,
            created=True,
        )

    async def _confirm_reused(self, order_id: str) -> TransactionResult:
        async with self._uow_factory() as uow:
            order = await uow.orders.get(order_id, lock=True)
            _ensure_payable(order)
            current = await uow.payments.get_pending_for_order(order.id, lock=True)
            if current is None or current.amount_cents != order.total_cents:
                raise ConcurrentModificationError("Order", order.id)

            if order.payment_transaction_id != current.payment_transaction_id:
                expected_version = order.version
                order.attach_transaction(current.payment_transaction_id)
                await uow.orders.update(order, expected_version)

        logger.info(
            "Payment transaction reused",
            order_id=order.id,
            transaction_id=current.payment_transaction_id,
        )
        return TransactionResult(
            transaction_id=current.payment_transaction_id,
            client_secret=current.client_secret,
            amount_cents=current.amount_cents,
            created=False,
        )

    # ========================================================================
    # Baskets
    # ========================================================================

    async def ensure_basket_transaction(self, owner_key: str) -> TransactionResult:
        """Return a provisional gateway transaction for a basket.

        Raises:
            NotFoundError: If the owner has no basket.
            EmptyBasketError: If the basket is empty.
            PaymentGatewayError: If the gateway fails; nothing is written.
        """
        async with self._uow_factory() as uow:
            basket = await uow.baskets.get_by_owner(owner_key)
            if basket is None:
                raise NotFoundError("Basket", owner_key)
            if basket.is_empty:
                raise EmptyBasketError(basket.id)
            quote = await quote_basket(uow, basket, self.shipping_policy)
        total = quote.total_cents

        if basket.payment_transaction_id and basket.payment_amount_cents == total:
            txn = await self.gateway.update_transaction(
                basket.payment_transaction_id,
                total,
                idempotency_key=f"update-basket-{basket.id}-{total}",
            )
            created = False
        else:
            txn = await self.gateway.create_transaction(
                total,
                quote.currency,
                metadata={"basket_id": basket.id},
                idempotency_key=f"basket-{basket.id}-{total}-{basket.version}",
            )
            created = True

        async with self._uow_factory() as uow:
            current = await uow.baskets.get(basket.id, lock=True)
            if current is None:
                raise NotFoundError("Basket", owner_key)
            if (
                current.payment_transaction_id
                and current.payment_transaction_id != txn.id
                and current.payment_amount_cents == total
            ):
                return TransactionResult(
                    transaction_id=current.payment_transaction_id,
                    client_secret=current.client_secret,
                    amount_cents=total,
                    created=False,
                )
            current.attach_transaction(txn.id, txn.client_secret, total)
            await uow.baskets.save(current)

        logger.info(
            "Basket payment transaction ready",
            basket_id=basket.id,
            transaction_id=txn.id,
            amount_cents=total,
            created=created,
        )
        return TransactionResult(
            transaction_id=txn.id,
            client_secret=txn.client_secret,
            amount_cents=total,
            created=created,
        )

    # ========================================================================
    # Reads
    # ========================================================================

    async def list_order_payments(self, order_id: str, actor: Actor) -> list[Payment]:
        """List all payment attempts of an order, oldest first."""
        async with self._uow_factory() as uow:
            order = await uow.orders.get(order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            actor.ensure_can_view(order)
            return await uow.payments.list_for_order(order_id)

    async def list_refunds(self, payment_id: str) -> list[PaymentRefund]:
        async with self._uow_factory() as uow:
            if await uow.payments.get(payment_id) is None:
                raise NotFoundError("Payment", payment_id)
            return await uow.payments.list_refunds(payment_id)

    # ========================================================================
    # Refunds
    # ========================================================================

    async def refund(
        self,
        payment_id: str,
        actor: Actor,
        amount_cents: int | None = None,
        reason: str | None = None,
    ) -> Payment:
        """Refund part or all of a succeeded payment.

        Args:
            payment_id: Payment to refund.
            actor: Admin issuing the refund.
            amount_cents: Amount to refund; defaults to the whole remainder.
            reason: Optional reason kept on the refund record.

        Returns:
            The updated payment.

        Raises:
            NotFoundError: If the payment does not exist.
            NotRefundableError: If the payment is not in a refundable state.
            InvalidAmountError: If the amount is not positive or above the remainder.
            PaymentGatewayError: If the gateway refuses; nothing is written.
            ConcurrentModificationError: If the payment changed during the gateway call.
        """
        async with self._uow_factory() as uow:
            payment = await uow.payments.get(payment_id)
            if payment is None:
                raise NotFoundError("Payment", payment_id)
            amount = payment.ensure_refundable(amount_cents)
        seen_version = payment.version

        gateway_refund = await self.gateway.refund(
            payment.payment_transaction_id,
            amount,
            idempotency_key=f"refund-{payment.id}-{payment.refunded_amount_cents}-{amount}",
        )

        async with self._uow_factory() as uow:
            # Order before payment, the same lock order as the webhook path
            order = await uow.orders.get(payment.order_id, lock=True)
            payment = await uow.payments.get(payment_id, lock=True)
            if payment.version != seen_version:
                logger.error(
                    "Refund accepted by gateway but payment changed concurrently",
                    payment_id=payment_id,
                    gateway_refund_id=gateway_refund.id,
                    amount_cents=amount,
                )
                raise ConcurrentModificationError("Payment", payment_id)

            payment.apply_refund(amount)
            await uow.payments.update(payment, seen_version)
            await uow.payments.add_refund(
                PaymentRefund(
                    id=new_id(),
                    payment_id=payment.id,
                    gateway_refund_id=gateway_refund.id,
                    amount_cents=amount,
                    reason=reason,
                    created_by=actor.audit_name,
                )
            )

            if payment.status == PaymentStatus.REFUNDED:
                expected_version = order.version
                order.set_payment_status(OrderPaymentStatus.REFUNDED)
                await uow.orders.update(order, expected_version)

        logger.info(
            "Payment refunded",
            payment_id=payment_id,
            order_id=payment.order_id,
            amount_cents=amount,
            refunded_total_cents=payment.refunded_amount_cents,
            status=payment.status.value,
            actor=actor.audit_name,
        )
        await dispatch_events(payment.collect_events(), self.notifier)
        return payment


# Global service instance
_payment_service: PaymentService | None = None


def get_payment_service() -> PaymentService:
    """Get or create the payment service instance."""
    global _payment_service
    if _payment_service is None:
        _payment_service = PaymentService()
    return _payment_service
