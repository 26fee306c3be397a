# order_service/state_machine.py
"""Order and refund status rules.

pending -> paid -> shipped -> delivered, plus pending -> cancelled.
delivered and cancelled are terminal. Refunds hang off delivered orders and
move pending -> approved | denied without touching the order status.
"""
from typing import Optional

from order_service.db.models import OrderStatus, RefundStatus
from order_service.errors import InvalidTransitionError

FORWARD_RANK = {
    OrderStatus.pending: 0,
    OrderStatus.paid: 1,
    OrderStatus.shipped: 2,
    OrderStatus.delivered: 3,
}

TERMINAL_STATUSES = frozenset({OrderStatus.delivered, OrderStatus.cancelled})


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    if current in TERMINAL_STATUSES:
        return False
    if new == OrderStatus.cancelled:
        return current == OrderStatus.pending
    return FORWARD_RANK[new] > FORWARD_RANK[current]


def ensure_transition(current: OrderStatus, new: OrderStatus, tracking_number: Optional[str] = None):
    """Raise InvalidTransitionError unless current -> new is allowed.

    Re-applying the current status is accepted only to attach a tracking
    number to an order that is still moving.
    """
    if current == new and tracking_number and current not in TERMINAL_STATUSES:
        return
    if not can_transition(current, new):
        raise InvalidTransitionError(
            f"Cannot change order status from '{current.value}' to '{new.value}'"
        )


def ensure_refundable(status: OrderStatus):
    if status != OrderStatus.delivered:
        raise InvalidTransitionError(
            f"Refunds can only be requested for delivered orders (order is '{status.value}')"
        )


def ensure_refund_pending(status: RefundStatus):
    if status != RefundStatus.pending:
        raise InvalidTransitionError(f"Refund has already been {status.value}")
