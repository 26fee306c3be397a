# order_service/db/order_functions.py
import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from order_service.config import Settings, get_settings
from order_service.db.cart_functions import claim_cart, clear_claimed_cart, get_cart_snapshot
from order_service.db.models import Order, OrderItem, OrderStatus
from order_service.db.stock_functions import Reservation, reserve_stock
from order_service.db.unit_of_work import UnitOfWork
from order_service.errors import CartConflictError, NotFoundError, OrderTimeoutError, ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total_amount: Decimal


def calculate_totals(reservations: Iterable[Reservation], shipping_cost: Decimal, tax_rate: Decimal) -> OrderTotals:
    subtotal = to_money(sum(
        (reservation.price_at_purchase * reservation.quantity for reservation in reservations),
        Decimal("0"),
    ))
    shipping_cost = to_money(shipping_cost)
    tax = to_money(subtotal * tax_rate)
    return OrderTotals(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax=tax,
        total_amount=subtotal + shipping_cost + tax,
    )


async def assemble_order(
    uow: UnitOfWork,
    user_id: int,
    reservations: List[Reservation],
    shipping_address: dict,
    payment_method: str,
    settings: Settings,
) -> Order:
    """Create the pending order and one immutable line per reservation."""
    totals = calculate_totals(reservations, settings.shipping_cost, settings.tax_rate)
    logger.debug("Order totals for user %s: %s", user_id, totals)

    order = Order(
        user_id=user_id,
        status=OrderStatus.pending,
        subtotal=totals.subtotal,
        shipping_cost=totals.shipping_cost,
        tax=totals.tax,
        total_amount=totals.total_amount,
        currency=settings.currency,
        shipping_address=shipping_address,
        payment_method=payment_method,
    )
    order.items = [
        OrderItem(
            product_id=reservation.product_id,
            quantity=reservation.quantity,
            price_at_purchase=reservation.price_at_purchase,
        )
        for reservation in reservations
    ]
    uow.db.add(order)
    await uow.step_completed()

    order_id = order.id

    async def discard(db: AsyncSession):
        await db.execute(
            delete(OrderItem)
            .where(OrderItem.order_id == order_id)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(Order)
            .where(Order.id == order_id)
            .execution_options(synchronize_session=False)
        )

    uow.add_compensation(f"discard order {order_id}", discard)
    return order


async def _place_order(
    db: AsyncSession,
    user_id: int,
    shipping_address: dict,
    payment_method: str,
    settings: Settings,
) -> int:
    async with UnitOfWork(db, settings.order_tx_mode) as uow:
        snapshot = await get_cart_snapshot(db, user_id)
        await claim_cart(uow, snapshot)
        reservations = await reserve_stock(uow, snapshot)
        order = await assemble_order(uow, user_id, reservations, shipping_address, payment_method, settings)
        await clear_claimed_cart(uow, snapshot.cart_id)
    return order.id


async def create_order(
    db: AsyncSession,
    user_id: int,
    shipping_address: dict,
    payment_method: str,
    settings: Optional[Settings] = None,
) -> Order:
    """Turn the user's cart into a pending order.

    Stock decrements, the order with its lines and the cart clear commit
    together or not at all, within ``order_tx_timeout`` seconds. A cart that
    changed between snapshot and claim is re-read and retried.
    """
    settings = settings or get_settings()
    if not shipping_address:
        raise ValidationError("Shipping address is required")
    if not payment_method:
        raise ValidationError("Payment method is required")

    attempts = max(1, settings.order_conflict_retries)
    for attempt in range(1, attempts + 1):
        try:
            order_id = await asyncio.wait_for(
                _place_order(db, user_id, shipping_address, payment_method, settings),
                timeout=settings.order_tx_timeout,
            )
        except CartConflictError:
            if attempt == attempts:
                raise
            logger.warning("Cart conflict for user %s, retrying (%s/%s)", user_id, attempt, attempts)
            continue
        except asyncio.TimeoutError:
            logger.error("Order creation for user %s timed out and was rolled back", user_id)
            raise OrderTimeoutError() from None

        logger.info("Order %s created for user %s", order_id, user_id)
        return await get_order_by_id(db, order_id)


async def get_order_by_id(db: AsyncSession, order_id: int) -> Order:
    result = await db.execute(
        select(Order)
        .filter(Order.id == order_id)
        .options(selectinload(Order.items))
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise NotFoundError("Order not found")
    return order


# Get a single order belonging to the user
async def get_order(db: AsyncSession, user_id: int, order_id: int) -> Order:
    order = await get_order_by_id(db, order_id)
    if order.user_id != user_id:
        raise NotFoundError("Order not found")
    return order


# Get all orders of the user, newest first
async def get_user_orders(db: AsyncSession, user_id: int, skip: int = 0, limit: int = 100) -> List[Order]:
    result = await db.execute(
        select(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(skip)
        .limit(limit)
        .options(selectinload(Order.items))
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()
