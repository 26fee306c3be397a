# order_service/errors.py
"""Errors raised by the order workflow.

Every error carries the HTTP status it is rendered with, so the API layer
only has to serialize it.
"""
from typing import List, Optional


class OrderServiceError(Exception):
    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"detail": self.detail, "error": type(self).__name__}


class NotFoundError(OrderServiceError):
    status_code = 404


class ValidationError(OrderServiceError):
    status_code = 400


class EmptyCartError(OrderServiceError):
    status_code = 400

    def __init__(self, detail: str = "Cart is empty"):
        super().__init__(detail)


class StockShortage:
    """One line that could not be reserved."""

    def __init__(self, product_id: int, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "requested": self.requested,
            "available": self.available,
        }

    def __repr__(self):
        return (
            f"StockShortage(product_id={self.product_id}, "
            f"requested={self.requested}, available={self.available})"
        )


class InsufficientStockError(OrderServiceError):
    status_code = 409

    def __init__(self, items: List[StockShortage], detail: Optional[str] = None):
        self.items = list(items)
        if detail is None:
            ids = ", ".join(str(item.product_id) for item in self.items)
            detail = f"Not enough stock available for product(s): {ids}"
        super().__init__(detail)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["items"] = [item.to_dict() for item in self.items]
        return data


class InvalidTransitionError(OrderServiceError):
    status_code = 409


class DuplicateRefundError(OrderServiceError):
    status_code = 409

    def __init__(self, detail: str = "A refund has already been requested for this order"):
        super().__init__(detail)


class CartConflictError(OrderServiceError):
    status_code = 409

    def __init__(self, detail: str = "Cart was modified concurrently, please retry"):
        super().__init__(detail)


class OrderTimeoutError(OrderServiceError):
    status_code = 504

    def __init__(self, detail: str = "Order creation timed out and was rolled back"):
        super().__init__(detail)


class PaymentProviderError(OrderServiceError):
    status_code = 502
