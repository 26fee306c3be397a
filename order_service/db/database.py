# order_service/db/database.py
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from order_service.config import get_settings

settings = get_settings()

# Async engine
engine = create_async_engine(settings.database_url, echo=settings.sql_echo)

# Async session factory
SessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Base class for models
Base = declarative_base()


# Session generator
async def get_db():
    async with SessionLocal() as session:
        yield session
