"""Caller identity as seen by the application services."""

from dataclasses import dataclass

from storefront.domain.entities import Order
from storefront.domain.exceptions import ForbiddenError


@dataclass(frozen=True)
class Actor:
    """Authenticated caller.

    Attributes:
        user_id: Caller's user id (None for anonymous basket owners).
        is_admin: Whether the caller holds the admin role.
    """

    user_id: str | None
    is_admin: bool = False

    @property
    def audit_name(self) -> str:
        """Name written into audit columns."""
        return self.user_id or "anonymous"

    def can_view(self, order: Order) -> bool:
        return self.is_admin or order.is_owned_by(self.user_id)

    def ensure_can_view(self, order: Order) -> None:
        """Raise unless the caller owns the order or is an admin.

        Raises:
            ForbiddenError: If access is not allowed.
        """
        if not self.can_view(order):
            raise ForbiddenError(f"Not allowed to access order {order.id}")

    def ensure_admin(self) -> None:
        """Raise unless the caller is an admin."""
        if not self.is_admin:
            raise ForbiddenError("Admin role required")
