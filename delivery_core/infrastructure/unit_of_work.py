import logging
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from delivery_core.infrastructure.repositories import (
    SQLAlchemyOrderRepository,
    SQLAlchemyStatusHistoryRepository,
    SQLAlchemyCourierRepository,
    SQLAlchemyPricingRepository,
    SQLAlchemyDemandRepository,
    SQLAlchemyWeatherRepository,
    SQLAlchemyOutboxRepository,
)

logger = logging.getLogger(__name__)


class UnitOfWork:
    """Одна транзакция на блок `async with uow() as tx`; все незакоммиченное откатывается"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self):
        async with self._session_factory() as session:
            tx = _UnitOfWorkImpl(session)
            try:
                yield tx
            except Exception:
                logger.debug("Транзакция прервана исключением, rollback")
                raise
            finally:
                # После commit откатывать уже нечего, rollback безопасен
                await session.rollback()


class _UnitOfWorkImpl:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.orders = SQLAlchemyOrderRepository(session)
        self.history = SQLAlchemyStatusHistoryRepository(session)
        self.couriers = SQLAlchemyCourierRepository(session)
        self.pricing = SQLAlchemyPricingRepository(session)
        self.demand = SQLAlchemyDemandRepository(session)
        self.weather = SQLAlchemyWeatherRepository(session)
        self.outbox = SQLAlchemyOutboxRepository(session)

    async def commit(self):
        await self.session.commit()

    async def rollback(self):
        await self.session.rollback()
