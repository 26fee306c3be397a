# order_service/db/stock_functions.py
"""Stock reservation.

Stock is only ever changed with single conditional statements
(``stock = stock - q WHERE stock >= q``), never read-then-write, so
concurrent orders against the same product serialize on the row and the
total decremented can never exceed what was on hand.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from order_service.db.cart_functions import CartSnapshot
from order_service.db.models import Product
from order_service.db.unit_of_work import UnitOfWork
from order_service.errors import (
    InsufficientStockError,
    NotFoundError,
    StockShortage,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    product_id: int
    quantity: int
    price_at_purchase: Decimal


async def _decrement_stock(db: AsyncSession, product_id: int, quantity: int) -> Optional[Decimal]:
    """Take ``quantity`` units if available; returns the price at that instant or None."""
    result = await db.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.active.is_(True),
            Product.stock >= quantity,
        )
        .values(stock=Product.stock - quantity)
        .returning(Product.price)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


async def _available_stock(db: AsyncSession, product_id: int) -> int:
    result = await db.execute(select(Product.stock, Product.active).filter(Product.id == product_id))
    row = result.one_or_none()
    if row is None or not row.active:
        return 0
    return row.stock


async def restore_stock(db: AsyncSession, items: Iterable[Tuple[int, int]]):
    """Give back (product_id, quantity) pairs. Does not commit."""
    for product_id, quantity in sorted(items):
        await db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )


def _restock_action(product_id: int, quantity: int):
    async def restock(db: AsyncSession):
        await restore_stock(db, [(product_id, quantity)])
    return restock


def find_shortages(snapshot: CartSnapshot) -> List[StockShortage]:
    shortages = []
    for line in snapshot.lines:
        if not line.active:
            shortages.append(StockShortage(line.product_id, line.quantity, 0))
        elif line.stock < line.quantity:
            shortages.append(StockShortage(line.product_id, line.quantity, line.stock))
    return shortages


async def reserve_stock(uow: UnitOfWork, snapshot: CartSnapshot) -> List[Reservation]:
    """Reserve every line of the snapshot or none of them.

    Shortages visible in the snapshot fail fast. Otherwise each product is
    decremented in ascending id order; lines that lose a race are collected
    and reported together, and the caller's unit of work undoes the rest.
    """
    shortages = find_shortages(snapshot)
    if shortages:
        logger.info("Cart %s rejected on snapshot check: %s", snapshot.cart_id, shortages)
        raise InsufficientStockError(shortages)

    reservations = []
    for line in sorted(snapshot.lines, key=lambda line: line.product_id):
        price = await _decrement_stock(uow.db, line.product_id, line.quantity)
        if price is None:
            available = await _available_stock(uow.db, line.product_id)
            shortages.append(StockShortage(line.product_id, line.quantity, available))
            continue
        await uow.step_completed()
        uow.add_compensation(
            f"restock product {line.product_id} by {line.quantity}",
            _restock_action(line.product_id, line.quantity),
        )
        reservations.append(Reservation(line.product_id, line.quantity, price))

    if shortages:
        logger.warning("Stock reservation for cart %s lost a race: %s", snapshot.cart_id, shortages)
        raise InsufficientStockError(shortages)

    return reservations


async def restock_product(db: AsyncSession, product_id: int, quantity: int) -> Product:
    if quantity < 1:
        raise ValidationError("Restock quantity must be at least 1")

    result = await db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
        .returning(Product.id)
        .execution_options(synchronize_session=False)
    )
    if result.scalar_one_or_none() is None:
        await db.rollback()
        raise NotFoundError("Product not found")
    await db.commit()

    result = await db.execute(
        select(Product)
        .filter(Product.id == product_id)
        .execution_options(populate_existing=True)
    )
    product = result.scalar_one()
    logger.info("Product %s restocked by %s, now %s", product_id, quantity, product.stock)
    return product
