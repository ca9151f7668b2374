"""Request dependencies shared by the routers.

Caller identity is established upstream and forwarded as headers:
``X-User-Id`` (authenticated user), ``X-User-Roles`` (comma separated)
and ``X-Basket-Owner`` (user id or anonymous basket token).
"""

from typing import Annotated

from fastapi import Depends, Header

from storefront.application.access import Actor
from storefront.domain.exceptions import DomainError

ADMIN_ROLE = "admin"


class MissingIdentityError(DomainError):
    """Raised when a route needs a caller identity that was not supplied."""

    error_code = "UNAUTHORIZED"
    status_code = 401


def get_actor(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_roles: Annotated[str | None, Header()] = None,
) -> Actor:
    """Build the caller from identity headers."""
    roles = {role.strip().lower() for role in (x_user_roles or "").split(",") if role.strip()}
    return Actor(user_id=x_user_id or None, is_admin=ADMIN_ROLE in roles)


def require_user(actor: Annotated[Actor, Depends(get_actor)]) -> Actor:
    """Require an authenticated user."""
    if actor.user_id is None:
        raise MissingIdentityError("X-User-Id header is required")
    return actor


def require_admin(actor: Annotated[Actor, Depends(require_user)]) -> Actor:
    """Require the admin role."""
    actor.ensure_admin()
    return actor


def get_owner_key(
    actor: Annotated[Actor, Depends(get_actor)],
    x_basket_owner: Annotated[str | None, Header()] = None,
) -> str:
    """Resolve the basket owner key, falling back to the user id."""
    owner_key = x_basket_owner or actor.user_id
    if not owner_key:
        raise MissingIdentityError("X-Basket-Owner or X-User-Id header is required")
    return owner_key
