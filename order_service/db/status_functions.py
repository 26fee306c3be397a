# order_service/db/status_functions.py
import logging
from datetime import datetime, timezone
from decimal import InvalidOperation
from typing import Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from order_service.config import Settings, get_settings
from order_service.db.models import Order, OrderStatus, Refund, RefundStatus
from order_service.db.order_functions import get_order, get_order_by_id, to_money
from order_service.db.stock_functions import restore_stock
from order_service.db.unit_of_work import UnitOfWork
from order_service.errors import (
    DuplicateRefundError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from order_service.payments import PaymentProvider
from order_service.state_machine import (
    ensure_refund_pending,
    ensure_refundable,
    ensure_transition,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def _set_status(db: AsyncSession, order_id: int, expected: OrderStatus, new: OrderStatus, **values):
    """Move the order from ``expected`` to ``new``; loses cleanly to a concurrent change."""
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == expected)
        .values(status=new, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Order %s left status %s before it could become %s", order_id, expected.value, new.value)
        raise InvalidTransitionError(f"Order {order_id} was modified concurrently")


async def _restock_order(db: AsyncSession, order: Order):
    await restore_stock(db, [(item.product_id, item.quantity) for item in order.items])
    logger.info("Restored stock for cancelled order %s", order.id)


async def cancel_order(db: AsyncSession, user_id: int, order_id: int, settings: Optional[Settings] = None) -> Order:
    """Cancel one of the user's pending orders."""
    settings = settings or get_settings()
    async with UnitOfWork(db):
        order = await get_order(db, user_id, order_id)
        ensure_transition(order.status, OrderStatus.cancelled)
        await _set_status(db, order.id, order.status, OrderStatus.cancelled)
        if settings.restock_on_cancel:
            await _restock_order(db, order)

    logger.info("Order %s cancelled by user %s", order_id, user_id)
    return await get_order_by_id(db, order_id)


async def update_order_status(
    db: AsyncSession,
    order_id: int,
    new_status: Union[OrderStatus, str],
    tracking_number: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Order:
    """Administrative status change; only forward moves are accepted."""
    settings = settings or get_settings()
    try:
        new_status = OrderStatus(new_status)
    except ValueError:
        raise ValidationError(f"Unknown order status: {new_status}") from None

    async with UnitOfWork(db):
        order = await get_order_by_id(db, order_id)
        current = order.status
        ensure_transition(current, new_status, tracking_number)

        values = {}
        if tracking_number:
            values["tracking_number"] = tracking_number
        await _set_status(db, order.id, current, new_status, **values)
        if new_status == OrderStatus.cancelled and settings.restock_on_cancel:
            await _restock_order(db, order)

    logger.info("Order %s status %s -> %s", order_id, current.value, new_status.value)
    return await get_order_by_id(db, order_id)


async def get_refund(db: AsyncSession, refund_id: int) -> Refund:
    result = await db.execute(
        select(Refund)
        .filter(Refund.id == refund_id)
        .execution_options(populate_existing=True)
    )
    refund = result.scalar_one_or_none()
    if not refund:
        raise NotFoundError("Refund not found")
    return refund


async def request_refund(db: AsyncSession, user_id: int, order_id: int, reason: str) -> Refund:
    async with UnitOfWork(db):
        order = await get_order(db, user_id, order_id)
        ensure_refundable(order.status)

        existing = await db.execute(select(Refund.id).filter(Refund.order_id == order.id))
        if existing.scalar_one_or_none() is not None:
            raise DuplicateRefundError()

        refund = Refund(
            order_id=order.id,
            user_id=user_id,
            reason=reason,
            status=RefundStatus.pending,
        )
        db.add(refund)
        try:
            await db.flush()
        except IntegrityError:
            raise DuplicateRefundError() from None

    logger.info("Refund %s requested for order %s", refund.id, order_id)
    return await get_refund(db, refund.id)


async def process_refund(db: AsyncSession, refund_id: int, admin_id: int, approve: bool) -> Refund:
    """Approve or deny a pending refund. The order status is left alone."""
    new_status = RefundStatus.approved if approve else RefundStatus.denied

    async with UnitOfWork(db):
        refund = await get_refund(db, refund_id)
        ensure_refund_pending(refund.status)
        result = await db.execute(
            update(Refund)
            .where(Refund.id == refund_id, Refund.status == RefundStatus.pending)
            .values(status=new_status, admin_approver_id=admin_id, processed_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(f"Refund {refund_id} was processed concurrently")

    logger.info("Refund %s %s by admin %s", refund_id, new_status.value, admin_id)
    return await get_refund(db, refund_id)


async def initialize_payment(db: AsyncSession, user_id: int, order_id: int, provider: PaymentProvider) -> Order:
    order = await get_order(db, user_id, order_id)
    ensure_transition(order.status, OrderStatus.paid)

    reference = await provider.initialize(order)
    async with UnitOfWork(db):
        result = await db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.pending)
            .values(payment_reference=reference)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(f"Order {order_id} is no longer pending")

    logger.info("Payment %s initialized for order %s", reference, order_id)
    return await get_order_by_id(db, order_id)


def _check_transaction(order: Order, transaction: dict):
    """The provider's transaction must pay for this order, in full."""
    try:
        amount = to_money(str(transaction.get("amount")))
    except InvalidOperation:
        amount = None
    if str(transaction.get("order_id")) != str(order.id) or amount != order.total_amount:
        logger.warning(
            "Transaction for order %s (amount %s) does not match order %s (total %s)",
            transaction.get("order_id"), transaction.get("amount"), order.id, order.total_amount,
        )
        raise ValidationError("Payment does not belong to this order")


async def confirm_payment(
    db: AsyncSession,
    user_id: int,
    order_id: int,
    provider: PaymentProvider,
    reference: Optional[str] = None,
) -> Order:
    """Mark a pending order paid once the provider confirms its own transaction."""
    order = await get_order(db, user_id, order_id)
    ensure_transition(order.status, OrderStatus.paid)

    if not order.payment_reference:
        raise ValidationError("Payment has not been initialized for this order")
    if reference and reference != order.payment_reference:
        raise ValidationError("Payment reference does not belong to this order")

    transaction = await provider.get_transaction(order.payment_reference)
    _check_transaction(order, transaction)
    if transaction.get("status") != "completed":
        raise ValidationError("Payment has not been completed")

    async with UnitOfWork(db):
        await _set_status(db, order.id, OrderStatus.pending, OrderStatus.paid)

    logger.info("Order %s paid (reference %s)", order_id, order.payment_reference)
    return await get_order_by_id(db, order_id)


async def get_payment_status(db: AsyncSession, user_id: int, order_id: int, provider: PaymentProvider) -> dict:
    order = await get_order(db, user_id, order_id)
    status = {
        "order_id": order.id,
        "order_status": order.status,
        "payment_reference": order.payment_reference,
        "payment_status": None,
        "amount": None,
        "paid_at": None,
    }
    if not order.payment_reference:
        return status

    transaction = await provider.get_transaction(order.payment_reference)
    _check_transaction(order, transaction)
    status["payment_status"] = transaction.get("status")
    status["amount"] = transaction.get("amount")
    if status["payment_status"] == "completed":
        status["paid_at"] = transaction.get("updated_at") or transaction.get("created_at")
    return status
