"""Value objects for the store domain.

Money, postal addresses and attribute snapshots. All are immutable and
compared by value.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Self

from storefront.domain.base import ValueObject, utcnow
from storefront.domain.exceptions import DomainError


class CurrencyMismatchError(DomainError):
    """Raised when combining money in different currencies."""

    def __init__(self, currency1: str, currency2: str) -> None:
        super().__init__(
            f"Cannot combine money with different currencies: {currency1} and {currency2}",
            details={"currency1": currency1, "currency2": currency2},
        )


class NegativeMoneyError(DomainError):
    """Raised when creating money with a negative amount."""

    def __init__(self, amount: int) -> None:
        super().__init__(
            f"Money amount cannot be negative: {amount}",
            details={"amount": amount},
        )


# ============================================================================
# Money
# ============================================================================


@dataclass(frozen=True)
class Money(ValueObject):
    """Monetary value in minor units (cents).

    Attributes:
        amount_cents: Amount in smallest currency unit.
        currency: ISO 4217 currency code.
    """

    amount_cents: int
    currency: str = "USD"

    def __post_init__(self) -> None:
        if self.amount_cents < 0:
            raise NegativeMoneyError(self.amount_cents)
        object.__setattr__(self, "currency", self.currency.upper())

    @classmethod
    def zero(cls, currency: str = "USD") -> Self:
        """Create zero amount money."""
        return cls(amount_cents=0, currency=currency)

    def __add__(self, other: "Money") -> "Money":
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return Money(self.amount_cents + other.amount_cents, self.currency)

    def __mul__(self, quantity: int) -> "Money":
        return Money(self.amount_cents * quantity, self.currency)

    def __rmul__(self, quantity: int) -> "Money":
        return self.__mul__(quantity)

    def __str__(self) -> str:
        return f"{self.amount_cents / 100:.2f} {self.currency}"

    def is_zero(self) -> bool:
        """Check if amount is zero."""
        return self.amount_cents == 0


# ============================================================================
# Address
# ============================================================================


@dataclass(frozen=True)
class Address(ValueObject):
    """Postal address captured on an order.

    Attributes:
        full_name: Recipient name.
        line1: Street address.
        city: City.
        postal_code: Postal/ZIP code.
        country: ISO 3166-1 alpha-2 country code.
        line2: Apartment, suite, etc.
        state: State/province/region.
        phone: Contact phone number.
    """

    full_name: str
    line1: str
    city: str
    postal_code: str
    country: str
    line2: str | None = None
    state: str | None = None
    phone: str | None = None

    def __post_init__(self) -> None:
        if len(self.country) != 2:
            raise DomainError(
                f"Country must be a 2-letter ISO code, got '{self.country}'",
                details={"country": self.country},
            )
        object.__setattr__(self, "country", self.country.upper())

    def format_single_line(self) -> str:
        """Format address as a single line."""
        parts = [self.line1]
        if self.line2:
            parts.append(self.line2)
        parts.append(self.city)
        if self.state:
            parts.append(self.state)
        parts.extend([self.postal_code, self.country])
        return ", ".join(parts)


@dataclass(frozen=True)
class ItemAttribute(ValueObject):
    """Name/value attribute (size, colour...) snapshotted onto an order item."""

    name: str
    value: str


# ============================================================================
# Order Number
# ============================================================================


@dataclass(frozen=True)
class OrderNumber(ValueObject):
    """Human-readable order number, ``ORD-YYYYMMDD-XXXXXX``."""

    value: str

    @classmethod
    def generate(cls, at: datetime | None = None) -> Self:
        """Generate a new order number for the given day.

        Args:
            at: Timestamp whose date goes into the number (defaults to now).

        Returns:
            New order number.
        """
        day = (at or utcnow()).strftime("%Y%m%d")
        return cls(f"ORD-{day}-{secrets.token_hex(3).upper()}")

    def __str__(self) -> str:
        return self.value
