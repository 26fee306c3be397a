# order_service/db/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from order_service.db.models import OrderStatus, RefundStatus


# Cart schemas
class CartItemBase(BaseModel):
    product_id: int
    quantity: int = 1


class CartQuantityUpdate(BaseModel):
    quantity: int


class CartItemResponse(CartItemBase):
    id: int

    class Config:
        from_attributes = True


class CartResponse(BaseModel):
    id: int
    user_id: int
    version: int
    items: List[CartItemResponse] = []

    class Config:
        from_attributes = True


# Order schemas
class ShippingAddress(BaseModel):
    full_name: str = Field(min_length=1)
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    country: str = Field(min_length=1)
    postal_code: Optional[str] = None
    phone: Optional[str] = None


class OrderCreate(BaseModel):
    shipping_address: ShippingAddress
    payment_method: str = Field(min_length=1)


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    quantity: int
    price_at_purchase: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    user_id: int
    status: OrderStatus
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total_amount: Decimal
    currency: str
    shipping_address: dict
    payment_method: str
    payment_reference: Optional[str] = None
    tracking_number: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None


class PaymentVerify(BaseModel):
    reference: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    order_id: int
    order_status: OrderStatus
    payment_reference: Optional[str] = None
    payment_status: Optional[str] = None
    amount: Optional[Decimal] = None
    paid_at: Optional[datetime] = None


# Refund schemas
class RefundCreate(BaseModel):
    reason: str = Field(min_length=1)


class RefundDecision(BaseModel):
    approve: bool


class RefundResponse(BaseModel):
    id: int
    order_id: int
    user_id: int
    reason: Optional[str] = None
    status: RefundStatus
    admin_approver_id: Optional[int] = None
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Product schemas
class RestockRequest(BaseModel):
    quantity: int


class ProductStockResponse(BaseModel):
    id: int
    name: str
    price: Decimal
    stock: int
    active: bool

    class Config:
        from_attributes = True
