"""Shipping cost policy."""

from typing import Protocol

from storefront.infrastructure.config import settings


class ShippingPolicy(Protocol):
    """Computes the shipping charge for an order."""

    def shipping_cost(self, subtotal_cents: int, requires_shipping: bool) -> int: ...


class FlatRateShippingPolicy:
    """Flat fee, waived above a subtotal threshold and for digital-only orders."""

    def __init__(self, flat_fee_cents: int | None = None, free_threshold_cents: int | None = None) -> None:
        self.flat_fee_cents = (
            settings.shipping_flat_fee_cents if flat_fee_cents is None else flat_fee_cents
        )
        self.free_threshold_cents = (
            settings.free_shipping_threshold_cents
            if free_threshold_cents is None
            else free_threshold_cents
        )

    def shipping_cost(self, subtotal_cents: int, requires_shipping: bool) -> int:
        if not requires_shipping:
            return 0
        if subtotal_cents > self.free_threshold_cents:
            return 0
        return self.flat_fee_cents
