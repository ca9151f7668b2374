"""Basket application service.

Keeps the pre-order basket per owner key and prices it against current
variant prices.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.exc import IntegrityError

from storefront.application.shipping import FlatRateShippingPolicy, ShippingPolicy
from storefront.domain.base import new_id
from storefront.domain.entities import Basket, BasketItem, ProductVariant
from storefront.domain.exceptions import (
    ConcurrentModificationError,
    InsufficientStockError,
    InvalidQuantityError,
    NotFoundError,
)
from storefront.domain.value_objects import Money
from storefront.infrastructure.config import settings
from storefront.infrastructure.unit_of_work import SqlAlchemyUnitOfWork, UnitOfWorkFactory

logger = structlog.get_logger()


# ============================================================================
# Pricing
# ============================================================================


@dataclass
class PricedLine:
    """Basket line joined with its current variant."""

    item: BasketItem
    variant: ProductVariant

    @property
    def line_total_cents(self) -> int:
        return self.variant.price_cents * self.item.quantity


@dataclass
class BasketQuote:
    """Basket totals at current prices."""

    lines: list[PricedLine]
    subtotal_cents: int
    shipping_cents: int
    total_cents: int
    currency: str
    requires_shipping: bool


def price_lines(
    lines: list[PricedLine],
    shipping_policy: ShippingPolicy,
    currency: str | None = None,
) -> BasketQuote:
    """Compute subtotal, shipping and total for priced lines."""
    currency = currency or settings.currency
    subtotal = Money.zero(currency)
    for line in lines:
        subtotal = subtotal + Money(line.variant.price_cents, currency) * line.item.quantity
    requires_shipping = any(not line.variant.is_digital for line in lines)
    shipping = shipping_policy.shipping_cost(subtotal.amount_cents, requires_shipping)
    return BasketQuote(
        lines=lines,
        subtotal_cents=subtotal.amount_cents,
        shipping_cents=shipping,
        total_cents=subtotal.amount_cents + shipping,
        currency=currency,
        requires_shipping=requires_shipping,
    )


async def quote_basket(
    uow: SqlAlchemyUnitOfWork,
    basket: Basket,
    shipping_policy: ShippingPolicy,
    lock: bool = False,
) -> BasketQuote:
    """Price a basket inside an open unit of work.

    Raises:
        NotFoundError: If a line points at a variant that no longer exists.
    """
    variants = await uow.variants.get_many([item.variant_id for item in basket.items], lock=lock)
    lines = []
    for item in basket.items:
        variant = variants.get(item.variant_id)
        if variant is None:
            raise NotFoundError("ProductVariant", item.variant_id)
        lines.append(PricedLine(item=item, variant=variant))
    return price_lines(lines, shipping_policy)


# ============================================================================
# Basket Service
# ============================================================================


class BasketService:
    """Service for basket operations."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory | None = None,
        shipping_policy: ShippingPolicy | None = None,
    ) -> None:
        self._uow_factory = uow_factory or SqlAlchemyUnitOfWork
        self.shipping_policy = shipping_policy or FlatRateShippingPolicy()

    async def get_basket(self, owner_key: str) -> tuple[Basket, BasketQuote]:
        """Get a basket and its current quote.

        Raises:
            NotFoundError: If the owner has no basket.
        """
        async with self._uow_factory() as uow:
            basket = await uow.baskets.get_by_owner(owner_key)
            if basket is None:
                raise NotFoundError("Basket", owner_key)
            return basket, await quote_basket(uow, basket, self.shipping_policy)

    async def add_item(
        self,
        owner_key: str,
        product_id: str,
        variant_id: str,
        quantity: int,
    ) -> tuple[Basket, BasketQuote]:
        """Add units of a variant, creating the basket on first use.

        Raises:
            InvalidQuantityError: If quantity is not positive.
            NotFoundError: If the variant does not exist for the product.
            InsufficientStockError: If the basket would hold more than stock.
        """
        if quantity <= 0:
            raise InvalidQuantityError(quantity)

        try:
            async with self._uow_factory() as uow:
                variant = await uow.variants.get(variant_id)
                if variant is None or variant.product_id != product_id:
                    raise NotFoundError("ProductVariant", variant_id)

                basket = await uow.baskets.get_by_owner(owner_key, lock=True)
                if basket is None:
                    basket = Basket(id=new_id(), owner_key=owner_key)
                    logger.info("Basket created", basket_id=basket.id)

                existing = basket.find_item(product_id, variant_id)
                requested = quantity + (existing.quantity if existing else 0)
                if requested > variant.quantity_in_stock:
                    raise InsufficientStockError(variant_id, requested, variant.quantity_in_stock)

                basket.add_item(product_id, variant_id, quantity)
                await uow.baskets.save(basket)
                quote = await quote_basket(uow, basket, self.shipping_policy)
        except IntegrityError as e:
            # Two first-adds for the same owner raced on the unique owner key
            raise ConcurrentModificationError("Basket", owner_key) from e

        logger.info(
            "Basket item added",
            basket_id=basket.id,
            variant_id=variant_id,
            quantity=quantity,
        )
        return basket, quote

    async def remove_item(
        self,
        owner_key: str,
        product_id: str,
        variant_id: str,
        quantity: int = 1,
    ) -> tuple[Basket, BasketQuote]:
        """Remove units of a variant from the basket.

        Raises:
            NotFoundError: If the owner has no basket.
            InvalidQuantityError: If quantity is not positive.
        """
        async with self._uow_factory() as uow:
            basket = await uow.baskets.get_by_owner(owner_key, lock=True)
            if basket is None:
                raise NotFoundError("Basket", owner_key)
            basket.remove_item(product_id, variant_id, quantity)
            await uow.baskets.save(basket)
            quote = await quote_basket(uow, basket, self.shipping_policy)

        logger.info(
            "Basket item removed",
            basket_id=basket.id,
            variant_id=variant_id,
            quantity=quantity,
        )
        return basket, quote

    async def abandon(self, owner_key: str) -> None:
        """Delete the owner's basket.

        Raises:
            NotFoundError: If the owner has no basket.
        """
        async with self._uow_factory() as uow:
            basket = await uow.baskets.get_by_owner(owner_key, lock=True)
            if basket is None:
                raise NotFoundError("Basket", owner_key)
            await uow.baskets.delete(basket.id)
        logger.info("Basket abandoned", basket_id=basket.id)

    async def clear_basket(self, basket_id: str) -> None:
        """Delete a basket by id, if it still exists."""
        async with self._uow_factory() as uow:
            await uow.baskets.delete(basket_id)


# Global service instance
_basket_service: BasketService | None = None


def get_basket_service() -> BasketService:
    """Get or create the basket service instance."""
    global _basket_service
    if _basket_service is None:
        _basket_service = BasketService()
    return _basket_service
