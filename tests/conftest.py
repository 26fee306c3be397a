"""Pytest fixtures for order_service tests."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["RABBITMQ_URL"] = ""

from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.future import select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from order_service.auth_utils import create_access_token
from order_service.config import Settings, get_settings
from order_service.db.database import get_db
from order_service.db.init_db import init_db
from order_service.db.models import Cart, CartItem, Product

SHIPPING_ADDRESS = {
    "full_name": "Abebe Bikila",
    "street": "Churchill Ave 12",
    "city": "Addis Ababa",
    "country": "Ethiopia",
    "postal_code": "1000",
    "phone": "+251900000000",
}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        secret_key="test-secret",
        rabbitmq_url="",
        payment_service_url="http://payments.test",
        order_tx_timeout=5.0,
    )


@pytest.fixture
async def engine(settings):
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_product(session_factory):
    """Insert a product and return its id."""

    async def _make(name="Shea Butter", price="100.00", stock=5, active=True):
        async with session_factory() as session:
            product = Product(name=name, price=Decimal(price), stock=stock, active=active)
            session.add(product)
            await session.commit()
            return product.id

    return _make


@pytest.fixture
def fill_cart(session_factory):
    """Put (product_id, quantity) pairs into a user's cart."""

    async def _fill(user_id, items):
        async with session_factory() as session:
            result = await session.execute(select(Cart).filter(Cart.user_id == user_id))
            cart = result.scalar_one_or_none()
            if cart is None:
                cart = Cart(user_id=user_id, version=0, checkout_locked=False)
                session.add(cart)
                await session.flush()
            for product_id, quantity in items:
                session.add(CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity))
            await session.commit()
            return cart.id

    return _fill


@pytest.fixture
def read_product(session_factory):
    async def _read(product_id):
        async with session_factory() as session:
            result = await session.execute(select(Product).filter(Product.id == product_id))
            return result.scalar_one()

    return _read


@pytest.fixture
def read_cart(session_factory):
    async def _read(user_id):
        async with session_factory() as session:
            result = await session.execute(select(Cart).filter(Cart.user_id == user_id))
            cart = result.scalar_one()
            items = await session.execute(select(CartItem).filter(CartItem.cart_id == cart.id))
            return cart, items.scalars().all()

    return _read


@pytest.fixture
def user_token(settings):
    def _token(user_id=1, role="user"):
        return create_access_token({"id": user_id, "role": role}, settings)

    return _token


@pytest.fixture
async def api_client(settings, session_factory):
    """HTTP client bound to the app with the test database and settings."""
    from order_service.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
