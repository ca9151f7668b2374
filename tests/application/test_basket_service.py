"""Tests for the basket service."""

import pytest

from storefront.application.basket_service import BasketService
from storefront.application.shipping import FlatRateShippingPolicy
from storefront.domain.entities import ProductType
from storefront.domain.exceptions import (
    InsufficientStockError,
    InvalidQuantityError,
    NotFoundError,
)


@pytest.fixture
def service(db) -> BasketService:
    return BasketService()


class TestAddItem:
    """Tests for adding basket lines."""

    async def test_first_add_creates_basket(self, service: BasketService, variant_factory) -> None:
        """The basket is created on the first add."""
        variant = await variant_factory(price_cents=2500, stock=10)

        basket, quote = await service.add_item("user-1", variant.product_id, variant.id, 2)

        assert basket.owner_key == "user-1"
        assert len(basket.items) == 1
        assert quote.subtotal_cents == 5000

    async def test_same_variant_merges(self, service: BasketService, variant_factory) -> None:
        """Adding a variant already in the basket increases its quantity."""
        variant = await variant_factory(stock=10)

        await service.add_item("user-1", variant.product_id, variant.id, 2)
        basket, _ = await service.add_item("user-1", variant.product_id, variant.id, 3)

        assert len(basket.items) == 1
        assert basket.items[0].quantity == 5

        stored, _ = await service.get_basket("user-1")
        assert stored.items[0].quantity == 5

    async def test_rejects_more_than_stock(self, service: BasketService, variant_factory) -> None:
        """The basket never holds more units than are in stock."""
        variant = await variant_factory(stock=3)
        await service.add_item("user-1", variant.product_id, variant.id, 2)

        with pytest.raises(InsufficientStockError) as exc_info:
            await service.add_item("user-1", variant.product_id, variant.id, 2)

        assert exc_info.value.details["requested"] == 4
        assert exc_info.value.details["available"] == 3

    async def test_rejects_zero_quantity(self, service: BasketService, variant_factory) -> None:
        """A zero quantity is rejected before touching the basket."""
        variant = await variant_factory()

        with pytest.raises(InvalidQuantityError):
            await service.add_item("user-1", variant.product_id, variant.id, 0)

    async def test_unknown_variant(self, service: BasketService) -> None:
        """Adding a variant that does not exist fails."""
        with pytest.raises(NotFoundError):
            await service.add_item("user-1", "prod-x", "var-x", 1)

    async def test_variant_must_belong_to_product(
        self, service: BasketService, variant_factory
    ) -> None:
        """The variant has to belong to the product named in the request."""
        variant = await variant_factory()

        with pytest.raises(NotFoundError):
            await service.add_item("user-1", "other-product", variant.id, 1)


class TestRemoveAndAbandon:
    """Tests for shrinking and deleting baskets."""

    async def test_remove_units(self, service: BasketService, variant_factory) -> None:
        """Removing some units keeps the line."""
        variant = await variant_factory()
        await service.add_item("user-1", variant.product_id, variant.id, 3)

        basket, quote = await service.remove_item("user-1", variant.product_id, variant.id, 1)

        assert basket.items[0].quantity == 2
        assert quote.subtotal_cents == 5000

    async def test_remove_whole_line(self, service: BasketService, variant_factory) -> None:
        """Removing every unit drops the line."""
        variant = await variant_factory()
        await service.add_item("user-1", variant.product_id, variant.id, 1)

        basket, _ = await service.remove_item("user-1", variant.product_id, variant.id, 1)

        assert basket.is_empty
        stored, _ = await service.get_basket("user-1")
        assert stored.is_empty

    async def test_abandon_deletes_basket(self, service: BasketService, variant_factory) -> None:
        """An abandoned basket is gone."""
        variant = await variant_factory()
        await service.add_item("user-1", variant.product_id, variant.id, 1)

        await service.abandon("user-1")

        with pytest.raises(NotFoundError):
            await service.get_basket("user-1")

    async def test_get_missing_basket(self, service: BasketService) -> None:
        """An owner without a basket gets NotFound."""
        with pytest.raises(NotFoundError):
            await service.get_basket("nobody")


class TestQuote:
    """Tests for basket pricing."""

    async def test_flat_shipping_below_threshold(
        self, service: BasketService, variant_factory
    ) -> None:
        """Physical baskets at or below the threshold pay the flat fee."""
        variant = await variant_factory(price_cents=5000)

        _, quote = await service.add_item("user-1", variant.product_id, variant.id, 2)

        assert quote.subtotal_cents == 10000
        assert quote.shipping_cents == 500
        assert quote.total_cents == 10500

    async def test_free_shipping_above_threshold(
        self, service: BasketService, variant_factory
    ) -> None:
        """Shipping is waived once the subtotal exceeds the threshold."""
        variant = await variant_factory(price_cents=5001)

        _, quote = await service.add_item("user-1", variant.product_id, variant.id, 2)

        assert quote.shipping_cents == 0
        assert quote.total_cents == 10002

    async def test_digital_only_has_no_shipping(
        self, service: BasketService, variant_factory
    ) -> None:
        """Digital-only baskets never pay shipping."""
        variant = await variant_factory(price_cents=1500, product_type=ProductType.DIGITAL)

        _, quote = await service.add_item("user-1", variant.product_id, variant.id, 1)

        assert not quote.requires_shipping
        assert quote.shipping_cents == 0

    async def test_custom_policy(self, db, variant_factory) -> None:
        """The shipping policy can be replaced."""
        service = BasketService(shipping_policy=FlatRateShippingPolicy(flat_fee_cents=900))
        variant = await variant_factory(price_cents=1000)

        _, quote = await service.add_item("user-1", variant.product_id, variant.id, 1)

        assert quote.shipping_cents == 900
