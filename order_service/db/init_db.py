# order_service/db/init_db.py
from sqlalchemy.ext.asyncio import AsyncEngine

from order_service.db.database import engine, Base
from order_service.db import models  # noqa: F401  registers tables on Base.metadata


async def init_db(bind: AsyncEngine = engine):
    async with bind.begin() as conn:
        # Create all tables
        await conn.run_sync(Base.metadata.create_all)
