"""API layer module.

Contains FastAPI routers and request/response schemas.
"""

from storefront.api.baskets import router as baskets_router
from storefront.api.health import router as health_router
from storefront.api.orders import router as orders_router
from storefront.api.payments import router as payments_router
from storefront.api.webhooks import router as webhooks_router

__all__ = [
    "baskets_router",
    "health_router",
    "orders_router",
    "payments_router",
    "webhooks_router",
]
