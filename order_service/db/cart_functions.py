# order_service/db/cart_functions.py
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from order_service.db.models import Cart, CartItem, Product
from order_service.db.unit_of_work import UnitOfWork
from order_service.errors import (
    CartConflictError,
    EmptyCartError,
    InsufficientStockError,
    NotFoundError,
    StockShortage,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotLine:
    product_id: int
    quantity: int
    price: Decimal
    stock: int
    active: bool


@dataclass(frozen=True)
class CartSnapshot:
    """A user's cart with products resolved as of read time."""
    cart_id: int
    user_id: int
    version: int
    lines: Tuple[SnapshotLine, ...]


# Get cart (with items) by user id
async def get_cart_by_user_id(db: AsyncSession, user_id: int):
    result = await db.execute(
        select(Cart)
        .filter(Cart.user_id == user_id)
        .options(selectinload(Cart.items))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_cart(db: AsyncSession, user_id: int):
    """Return the user's cart, creating an empty one on first access."""
    cart = await get_cart_by_user_id(db, user_id)
    if cart:
        return cart

    db.add(Cart(user_id=user_id, version=0, checkout_locked=False))
    try:
        await db.commit()
    except IntegrityError:
        # Another request created it first
        await db.rollback()
    return await get_cart_by_user_id(db, user_id)


async def get_cart_snapshot(db: AsyncSession, user_id: int) -> CartSnapshot:
    cart = await get_cart_by_user_id(db, user_id)
    if not cart or not cart.items:
        raise EmptyCartError()

    product_ids = [item.product_id for item in cart.items]
    result = await db.execute(
        select(Product)
        .filter(Product.id.in_(product_ids))
        .execution_options(populate_existing=True)
    )
    products = {product.id: product for product in result.scalars().all()}

    lines = []
    for item in cart.items:
        product = products.get(item.product_id)
        if product is None:
            raise NotFoundError(f"Product {item.product_id} not found")
        lines.append(SnapshotLine(
            product_id=product.id,
            quantity=item.quantity,
            price=product.price,
            stock=product.stock,
            active=product.active,
        ))

    logger.debug("Cart snapshot for user %s: version=%s lines=%s", user_id, cart.version, lines)
    return CartSnapshot(cart_id=cart.id, user_id=user_id, version=cart.version, lines=tuple(lines))


async def _bump_cart_version(db: AsyncSession, cart: Cart):
    """Compare-and-swap on the cart version; fails while checkout holds the cart."""
    result = await db.execute(
        update(Cart)
        .where(Cart.id == cart.id, Cart.version == cart.version, Cart.checkout_locked.is_(False))
        .values(version=Cart.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Lost cart update race for cart %s at version %s", cart.id, cart.version)
        raise CartConflictError()


async def _get_active_product(db: AsyncSession, product_id: int) -> Product:
    result = await db.execute(
        select(Product)
        .filter(Product.id == product_id, Product.active.is_(True))
        .execution_options(populate_existing=True)
    )
    product = result.scalar_one_or_none()
    if not product:
        raise NotFoundError("Product not found")
    return product


def _find_item(cart: Cart, product_id: int):
    return next((item for item in cart.items if item.product_id == product_id), None)


def _check_cart_stock(product: Product, quantity: int):
    if quantity > product.stock:
        raise InsufficientStockError(
            [StockShortage(product.id, quantity, product.stock)],
            "Not enough stock available",
        )


# Add product to cart
async def add_product_to_cart(db: AsyncSession, user_id: int, product_id: int, quantity: int = 1):
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    product = await _get_active_product(db, product_id)
    cart = await get_or_create_cart(db, user_id)

    async with UnitOfWork(db):
        cart_item = _find_item(cart, product_id)
        new_quantity = quantity + (cart_item.quantity if cart_item else 0)
        _check_cart_stock(product, new_quantity)

        await _bump_cart_version(db, cart)
        if cart_item:
            cart_item.quantity = new_quantity
        else:
            db.add(CartItem(cart_id=cart.id, product_id=product_id, quantity=new_quantity))

    return await get_cart_by_user_id(db, user_id)


# Update product quantity in cart
async def update_product_quantity_in_cart(db: AsyncSession, user_id: int, product_id: int, quantity: int):
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")

    product = await _get_active_product(db, product_id)
    cart = await get_cart_by_user_id(db, user_id)
    if not cart:
        raise NotFoundError("Cart not found")

    async with UnitOfWork(db):
        cart_item = _find_item(cart, product_id)
        if not cart_item:
            raise NotFoundError("Product not found in the cart")
        _check_cart_stock(product, quantity)

        await _bump_cart_version(db, cart)
        cart_item.quantity = quantity

    return await get_cart_by_user_id(db, user_id)


# Remove product from cart
async def remove_product_from_cart(db: AsyncSession, user_id: int, product_id: int):
    cart = await get_cart_by_user_id(db, user_id)
    if not cart:
        raise NotFoundError("Cart not found")

    async with UnitOfWork(db):
        cart_item = _find_item(cart, product_id)
        if not cart_item:
            raise NotFoundError("Product not found in the cart")

        await _bump_cart_version(db, cart)
        await db.execute(
            delete(CartItem)
            .where(CartItem.id == cart_item.id)
            .execution_options(synchronize_session=False)
        )

    return await get_cart_by_user_id(db, user_id)


async def clear_user_cart(db: AsyncSession, user_id: int):
    """Empty the user's cart outside of checkout."""
    cart = await get_cart_by_user_id(db, user_id)
    if not cart:
        raise NotFoundError("Cart not found")

    async with UnitOfWork(db):
        await _bump_cart_version(db, cart)
        await db.execute(
            delete(CartItem)
            .where(CartItem.cart_id == cart.id)
            .execution_options(synchronize_session=False)
        )

    return await get_cart_by_user_id(db, user_id)


async def claim_cart(uow: UnitOfWork, snapshot: CartSnapshot):
    """Lock the cart for checkout if nobody touched it since the snapshot."""
    cart_id = snapshot.cart_id
    result = await uow.db.execute(
        update(Cart)
        .where(
            Cart.id == cart_id,
            Cart.version == snapshot.version,
            Cart.checkout_locked.is_(False),
        )
        .values(version=Cart.version + 1, checkout_locked=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Cart %s changed since snapshot version %s", cart_id, snapshot.version)
        raise CartConflictError()
    await uow.step_completed()

    async def release(db: AsyncSession):
        await db.execute(
            update(Cart)
            .where(Cart.id == cart_id)
            .values(checkout_locked=False)
            .execution_options(synchronize_session=False)
        )

    uow.add_compensation(f"release cart {cart_id}", release)


async def clear_claimed_cart(uow: UnitOfWork, cart_id: int):
    """Empty a claimed cart and release the checkout lock."""
    await uow.db.execute(
        delete(CartItem)
        .where(CartItem.cart_id == cart_id)
        .execution_options(synchronize_session=False)
    )
    await uow.db.execute(
        update(Cart)
        .where(Cart.id == cart_id)
        .values(version=Cart.version + 1, checkout_locked=False)
        .execution_options(synchronize_session=False)
    )
    await uow.step_completed()
    logger.debug("Cart %s cleared", cart_id)
