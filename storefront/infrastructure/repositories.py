"""SQLAlchemy repositories.

Each repository maps between ORM models and domain entities over one
``AsyncSession`` owned by the unit of work. Reads taken with
``lock=True`` issue ``SELECT ... FOR UPDATE`` (a no-op on SQLite) and
refresh any copy already in the identity map. Updates to orders and
payments are compare-and-set on ``version``.
"""

from typing import Any

import structlog
from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

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
from storefront.domain.exceptions import ConcurrentModificationError, InsufficientStockError
from storefront.domain.state_machines import OrderPaymentStatus, OrderStatus, PaymentStatus
from storefront.domain.value_objects import Address, ItemAttribute
from storefront.infrastructure.models import (
    BasketItemModel,
    BasketModel,
    OrderItemModel,
    OrderModel,
    OrderStatusHistoryModel,
    PaymentModel,
    PaymentRefundModel,
    PaymentWebhookEventModel,
    ProductVariantModel,
)

logger = structlog.get_logger()


def _locked(stmt: Select, lock: bool) -> Select:
    if lock:
        return stmt.with_for_update().execution_options(populate_existing=True)
    return stmt


def _attributes_to_json(attributes: tuple[ItemAttribute, ...]) -> list[dict[str, str]]:
    return [{"name": a.name, "value": a.value} for a in attributes]


def _attributes_from_json(data: list[dict[str, Any]] | None) -> tuple[ItemAttribute, ...]:
    return tuple(ItemAttribute(name=a["name"], value=a["value"]) for a in data or [])


# ============================================================================
# Inventory
# ============================================================================


class VariantRepository:
    """Inventory port backed by the product_variants table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _to_entity(model: ProductVariantModel) -> ProductVariant:
        return ProductVariant(
            id=model.id,
            product_id=model.product_id,
            product_name=model.product_name,
            sku=model.sku,
            price_cents=model.price_cents,
            quantity_in_stock=model.quantity_in_stock,
            product_type=ProductType(model.product_type),
            attributes=_attributes_from_json(model.attributes),
        )

    async def add(self, variant: ProductVariant) -> None:
        self.session.add(
            ProductVariantModel(
                id=variant.id,
                product_id=variant.product_id,
                product_name=variant.product_name,
                sku=variant.sku,
                price_cents=variant.price_cents,
                quantity_in_stock=variant.quantity_in_stock,
                product_type=variant.product_type.value,
                attributes=_attributes_to_json(variant.attributes),
            )
        )
        await self.session.flush()

    async def get(self, variant_id: str, lock: bool = False) -> ProductVariant | None:
        stmt = _locked(select(ProductVariantModel).where(ProductVariantModel.id == variant_id), lock)
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get_many(self, variant_ids: list[str], lock: bool = False) -> dict[str, ProductVariant]:
        """Load several variants, locked in id order to avoid deadlocks."""
        stmt = select(ProductVariantModel).where(
            ProductVariantModel.id.in_(sorted(set(variant_ids)))
        ).order_by(ProductVariantModel.id)
        models = (await self.session.execute(_locked(stmt, lock))).scalars().all()
        return {m.id: self._to_entity(m) for m in models}

    async def get_stock(self, variant_id: str) -> int:
        stmt = select(ProductVariantModel.quantity_in_stock).where(ProductVariantModel.id == variant_id)
        return (await self.session.execute(stmt)).scalar_one_or_none() or 0

    async def reserve_stock(self, variant_id: str, quantity: int) -> None:
        """Decrement stock, failing when fewer units remain.

        Raises:
            InsufficientStockError: If stock is below ``quantity``.
        """
        result = await self.session.execute(
            update(ProductVariantModel)
            .where(
                ProductVariantModel.id == variant_id,
                ProductVariantModel.quantity_in_stock >= quantity,
            )
            .values(quantity_in_stock=ProductVariantModel.quantity_in_stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InsufficientStockError(variant_id, quantity, await self.get_stock(variant_id))

    async def release_stock(self, variant_id: str, quantity: int) -> None:
        """Return units to stock."""
        await self.session.execute(
            update(ProductVariantModel)
            .where(ProductVariantModel.id == variant_id)
            .values(quantity_in_stock=ProductVariantModel.quantity_in_stock + quantity)
            .execution_options(synchronize_session=False)
        )


# ============================================================================
# Baskets
# ============================================================================


class BasketRepository:
    """Basket persistence."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _to_entity(model: BasketModel) -> Basket:
        return Basket(
            id=model.id,
            owner_key=model.owner_key,
            items=[
                BasketItem(
                    id=item.id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    quantity=item.quantity,
                )
                for item in model.items
            ],
            payment_transaction_id=model.payment_transaction_id,
            client_secret=model.client_secret,
            payment_amount_cents=model.payment_amount_cents,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def _get_model(self, stmt: Select, lock: bool) -> BasketModel | None:
        return (await self.session.execute(_locked(stmt, lock))).scalar_one_or_none()

    async def get(self, basket_id: str, lock: bool = False) -> Basket | None:
        model = await self._get_model(select(BasketModel).where(BasketModel.id == basket_id), lock)
        return self._to_entity(model) if model else None

    async def get_by_owner(self, owner_key: str, lock: bool = False) -> Basket | None:
        model = await self._get_model(
            select(BasketModel).where(BasketModel.owner_key == owner_key), lock
        )
        return self._to_entity(model) if model else None

    async def save(self, basket: Basket) -> None:
        """Insert or update a basket together with its lines."""
        model = await self.session.get(BasketModel, basket.id)
        if model is None:
            model = BasketModel(id=basket.id, owner_key=basket.owner_key, created_at=basket.created_at)
            self.session.add(model)

        model.payment_transaction_id = basket.payment_transaction_id
        model.client_secret = basket.client_secret
        model.payment_amount_cents = basket.payment_amount_cents
        model.version = basket.version
        model.updated_at = basket.updated_at
        existing = {item.id: item for item in model.items}
        lines = []
        for position, item in enumerate(basket.items):
            line = existing.get(item.id) or BasketItemModel(
                id=item.id,
                product_id=item.product_id,
                variant_id=item.variant_id,
            )
            line.quantity = item.quantity
            line.position = position
            lines.append(line)
        model.items = lines
        await self.session.flush()

    async def delete(self, basket_id: str) -> None:
        model = await self.session.get(BasketModel, basket_id)
        if model is not None:
            await self.session.delete(model)
            await self.session.flush()


# ============================================================================
# Orders
# ============================================================================


def _address_from_model(model: OrderModel, prefix: str) -> Address:
    return Address(
        full_name=getattr(model, f"{prefix}_full_name"),
        line1=getattr(model, f"{prefix}_line1"),
        line2=getattr(model, f"{prefix}_line2"),
        city=getattr(model, f"{prefix}_city"),
        state=getattr(model, f"{prefix}_state"),
        postal_code=getattr(model, f"{prefix}_postal_code"),
        country=getattr(model, f"{prefix}_country"),
        phone=getattr(model, f"{prefix}_phone"),
    )


def _address_columns(address: Address, prefix: str) -> dict[str, Any]:
    return {
        f"{prefix}_full_name": address.full_name,
        f"{prefix}_line1": address.line1,
        f"{prefix}_line2": address.line2,
        f"{prefix}_city": address.city,
        f"{prefix}_state": address.state,
        f"{prefix}_postal_code": address.postal_code,
        f"{prefix}_country": address.country,
        f"{prefix}_phone": address.phone,
    }


class OrderRepository:
    """Order, order item and status history persistence."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _to_entity(model: OrderModel) -> Order:
        return Order(
            id=model.id,
            order_number=model.order_number,
            user_id=model.user_id,
            status=OrderStatus(model.status),
            payment_status=OrderPaymentStatus(model.payment_status),
            items=[
                OrderItem(
                    id=item.id,
                    order_id=item.order_id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    product_name=item.product_name,
                    sku=item.sku,
                    unit_price_cents=item.unit_price_cents,
                    quantity=item.quantity,
                    product_type=ProductType(item.product_type),
                    attributes=_attributes_from_json(item.attributes),
                )
                for item in model.items
            ],
            shipping_address=_address_from_model(model, "shipping"),
            billing_address=_address_from_model(model, "billing"),
            subtotal_cents=model.subtotal_cents,
            shipping_cents=model.shipping_cents,
            total_cents=model.total_cents,
            currency=model.currency,
            payment_transaction_id=model.payment_transaction_id,
            tracking_number=model.tracking_number,
            notes=model.notes,
            order_date=model.order_date,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _mutable_columns(order: Order) -> dict[str, Any]:
        return {
            "status": order.status.value,
            "payment_status": order.payment_status.value,
            "payment_transaction_id": order.payment_transaction_id,
            "tracking_number": order.tracking_number,
            "notes": order.notes,
            "version": order.version,
            "updated_at": order.updated_at,
        }

    async def add(self, order: Order) -> None:
        """Insert a new order with its item snapshots."""
        model = OrderModel(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            subtotal_cents=order.subtotal_cents,
            shipping_cents=order.shipping_cents,
            total_cents=order.total_cents,
            currency=order.currency,
            order_date=order.order_date,
            created_at=order.created_at,
            **_address_columns(order.shipping_address, "shipping"),
            **_address_columns(order.billing_address, "billing"),
            **self._mutable_columns(order),
        )
        model.items = [
            OrderItemModel(
                id=item.id,
                order_id=order.id,
                product_id=item.product_id,
                variant_id=item.variant_id,
                product_name=item.product_name,
                sku=item.sku,
                unit_price_cents=item.unit_price_cents,
                quantity=item.quantity,
                line_total_cents=item.line_total_cents,
                product_type=item.product_type.value,
                attributes=_attributes_to_json(item.attributes),
                position=position,
            )
            for position, item in enumerate(order.items)
        ]
        self.session.add(model)
        await self.session.flush()

    async def get(self, order_id: str, lock: bool = False) -> Order | None:
        stmt = _locked(select(OrderModel).where(OrderModel.id == order_id), lock)
        model = (await self.session.execute(stmt)).scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update(self, order: Order, expected_version: int) -> None:
        """Write mutable order columns if nobody else did first.

        Raises:
            ConcurrentModificationError: If the stored version moved on.
        """
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order.id, OrderModel.version == expected_version)
            .values(**self._mutable_columns(order))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Order version conflict",
                order_id=order.id,
                expected_version=expected_version,
            )
            raise ConcurrentModificationError("Order", order.id)

    async def list_orders(
        self,
        user_id: str | None = None,
        status: OrderStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Order], int]:
        """List orders newest first.

        Returns:
            The page of orders and the total number of matches.
        """
        stmt = select(OrderModel)
        count_stmt = select(func.count()).select_from(OrderModel)
        if user_id is not None:
            stmt = stmt.where(OrderModel.user_id == user_id)
            count_stmt = count_stmt.where(OrderModel.user_id == user_id)
        if status is not None:
            stmt = stmt.where(OrderModel.status == status.value)
            count_stmt = count_stmt.where(OrderModel.status == status.value)

        total = (await self.session.execute(count_stmt)).scalar_one()
        stmt = stmt.order_by(OrderModel.order_date.desc(), OrderModel.id).offset(offset).limit(limit)
        models = (await self.session.execute(stmt)).scalars().all()
        return [self._to_entity(m) for m in models], total

    async def add_history(self, entry: StatusHistoryEntry) -> None:
        self.session.add(
            OrderStatusHistoryModel(
                id=entry.id,
                order_id=entry.order_id,
                from_status=entry.from_status.value if entry.from_status else None,
                to_status=entry.to_status.value,
                changed_at=entry.changed_at,
                updated_by=entry.updated_by,
                notes=entry.notes,
                tracking_number=entry.tracking_number,
                sequence=entry.sequence,
            )
        )
        await self.session.flush()

    async def list_history(self, order_id: str) -> list[StatusHistoryEntry]:
        stmt = (
            select(OrderStatusHistoryModel)
            .where(OrderStatusHistoryModel.order_id == order_id)
            .order_by(OrderStatusHistoryModel.sequence, OrderStatusHistoryModel.changed_at)
        )
        models = (await self.session.execute(stmt)).scalars().all()
        return [
            StatusHistoryEntry(
                id=m.id,
                order_id=m.order_id,
                from_status=OrderStatus(m.from_status) if m.from_status else None,
                to_status=OrderStatus(m.to_status),
                changed_at=m.changed_at,
                updated_by=m.updated_by,
                notes=m.notes,
                tracking_number=m.tracking_number,
                sequence=m.sequence,
            )
            for m in models
        ]


# ============================================================================
# Payments
# ============================================================================


class PaymentRepository:
    """Payment, refund and gateway event persistence."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _to_entity(model: PaymentModel) -> Payment:
        return Payment(
            id=model.id,
            order_id=model.order_id,
            payment_transaction_id=model.payment_transaction_id,
            amount_cents=model.amount_cents,
            currency=model.currency,
            client_secret=model.client_secret,
            status=PaymentStatus(model.status),
            failure_reason=model.failure_reason,
            refunded_amount_cents=model.refunded_amount_cents,
            processed_at=model.processed_at,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _mutable_columns(payment: Payment) -> dict[str, Any]:
        return {
            "status": payment.status.value,
            "failure_reason": payment.failure_reason,
            "refunded_amount_cents": payment.refunded_amount_cents,
            "processed_at": payment.processed_at,
            "version": payment.version,
            "updated_at": payment.updated_at,
        }

    async def add(self, payment: Payment) -> None:
        self.session.add(
            PaymentModel(
                id=payment.id,
                order_id=payment.order_id,
                payment_transaction_id=payment.payment_transaction_id,
                amount_cents=payment.amount_cents,
                currency=payment.currency,
                client_secret=payment.client_secret,
                created_at=payment.created_at,
                **self._mutable_columns(payment),
            )
        )
        await self.session.flush()

    async def _get_one(self, stmt: Select, lock: bool) -> Payment | None:
        model = (await self.session.execute(_locked(stmt, lock))).scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def get(self, payment_id: str, lock: bool = False) -> Payment | None:
        return await self._get_one(select(PaymentModel).where(PaymentModel.id == payment_id), lock)

    async def get_by_transaction(self, transaction_id: str, lock: bool = False) -> Payment | None:
        return await self._get_one(
            select(PaymentModel).where(PaymentModel.payment_transaction_id == transaction_id),
            lock,
        )

    async def get_pending_for_order(self, order_id: str, lock: bool = False) -> Payment | None:
        stmt = (
            select(PaymentModel)
            .where(
                PaymentModel.order_id == order_id,
                PaymentModel.status == PaymentStatus.PENDING.value,
            )
            .order_by(PaymentModel.created_at.desc())
            .limit(1)
        )
        return await self._get_one(stmt, lock)

    async def list_for_order(self, order_id: str) -> list[Payment]:
        stmt = (
            select(PaymentModel)
            .where(PaymentModel.order_id == order_id)
            .order_by(PaymentModel.created_at)
        )
        models = (await self.session.execute(stmt)).scalars().all()
        return [self._to_entity(m) for m in models]

    async def update(self, payment: Payment, expected_version: int) -> None:
        """Write mutable payment columns if nobody else did first.

        Raises:
            ConcurrentModificationError: If the stored version moved on.
        """
        result = await self.session.execute(
            update(PaymentModel)
            .where(PaymentModel.id == payment.id, PaymentModel.version == expected_version)
            .values(**self._mutable_columns(payment))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Payment version conflict",
                payment_id=payment.id,
                expected_version=expected_version,
            )
            raise ConcurrentModificationError("Payment", payment.id)

    async def add_refund(self, refund: PaymentRefund) -> None:
        self.session.add(
            PaymentRefundModel(
                id=refund.id,
                payment_id=refund.payment_id,
                gateway_refund_id=refund.gateway_refund_id,
                amount_cents=refund.amount_cents,
                reason=refund.reason,
                created_by=refund.created_by,
                created_at=refund.created_at,
            )
        )
        await self.session.flush()

    async def list_refunds(self, payment_id: str) -> list[PaymentRefund]:
        stmt = (
            select(PaymentRefundModel)
            .where(PaymentRefundModel.payment_id == payment_id)
            .order_by(PaymentRefundModel.created_at)
        )
        models = (await self.session.execute(stmt)).scalars().all()
        return [
            PaymentRefund(
                id=m.id,
                payment_id=m.payment_id,
                gateway_refund_id=m.gateway_refund_id,
                amount_cents=m.amount_cents,
                reason=m.reason,
                created_by=m.created_by,
                created_at=m.created_at,
            )
            for m in models
        ]


class WebhookEventRepository:
    """Gateway event log used to spot redelivered notifications."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(self, event_id: str) -> bool:
        stmt = select(PaymentWebhookEventModel.event_id).where(
            PaymentWebhookEventModel.event_id == event_id
        )
        return (await self.session.execute(stmt)).scalar_one_or_none() is not None

    async def record(
        self,
        event_id: str,
        event_type: str,
        transaction_id: str | None,
        outcome: str,
    ) -> None:
        """Insert an event row. A concurrent duplicate fails the flush."""
        self.session.add(
            PaymentWebhookEventModel(
                event_id=event_id,
                event_type=event_type,
                payment_transaction_id=transaction_id,
                outcome=outcome,
            )
        )
        await self.session.flush()
