# order_service/db/unit_of_work.py
"""Transaction boundary for multi-entity writes.

In ``transaction`` mode every step runs in one database transaction and a
rollback undoes all of them. In ``saga`` mode each step is committed as soon
as it completes and the compensations registered along the way are replayed
in reverse order when a later step fails.
"""
import logging
from typing import Awaitable, Callable, List, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from order_service.config import TX_MODE_SAGA, TX_MODE_TRANSACTION

logger = logging.getLogger(__name__)

Compensation = Callable[[AsyncSession], Awaitable[None]]


class UnitOfWork:
    def __init__(self, db: AsyncSession, mode: str = TX_MODE_TRANSACTION):
        if mode not in (TX_MODE_TRANSACTION, TX_MODE_SAGA):
            raise ValueError(f"Unknown transaction mode: {mode}")
        self.db = db
        self.mode = mode
        self._compensations: List[Tuple[str, Compensation]] = []

    @property
    def is_saga(self) -> bool:
        return self.mode == TX_MODE_SAGA

    def add_compensation(self, description: str, action: Compensation):
        self._compensations.append((description, action))

    async def step_completed(self):
        """Make the current step's writes durable (saga) or visible (transaction)."""
        if self.is_saga:
            await self.db.commit()
        else:
            await self.db.flush()

    async def commit(self):
        await self.db.commit()
        self._compensations.clear()

    async def rollback(self):
        await self.db.rollback()
        if self.is_saga:
            await self._compensate()
        self._compensations.clear()

    async def _compensate(self):
        failures = []
        for description, action in reversed(self._compensations):
            logger.debug("Compensating: %s", description)
            try:
                await action(self.db)
                await self.db.commit()
            except Exception as exc:
                logger.exception("Compensation failed: %s", description)
                await self.db.rollback()
                failures.append(exc)
        if failures:
            raise failures[0]

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()
        return False
