"""SQLAlchemy unit of work.

One unit of work is one database transaction. Leaving the context
normally commits; leaving it through an exception rolls back and
re-raises.
"""

from collections.abc import Callable
from types import TracebackType

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.infrastructure import database
from storefront.infrastructure.repositories import (
    BasketRepository,
    OrderRepository,
    PaymentRepository,
    VariantRepository,
    WebhookEventRepository,
)


class SqlAlchemyUnitOfWork:
    """Async context manager exposing the repositories over one session.

    Example:
        async with SqlAlchemyUnitOfWork() as uow:
            order = await uow.orders.get(order_id, lock=True)
            ...
    """

    def __init__(self, session_factory: Callable[[], AsyncSession] | None = None) -> None:
        self._session_factory = session_factory
        self.session: AsyncSession | None = None

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        factory = self._session_factory or database.async_session_factory
        self.session = factory()
        self.variants = VariantRepository(self.session)
        self.baskets = BasketRepository(self.session)
        self.orders = OrderRepository(self.session)
        self.payments = PaymentRepository(self.session)
        self.webhook_events = WebhookEventRepository(self.session)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is None:
                await self.commit()
            else:
                await self.rollback()
        finally:
            await self.session.close()
            self.session = None

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


UnitOfWorkFactory = Callable[[], SqlAlchemyUnitOfWork]
