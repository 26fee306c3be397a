# order_service/main.py
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from order_service.auth_utils import CurrentUser, get_current_user, require_admin
from order_service.config import Settings, get_settings
from order_service.db.cart_functions import (
    add_product_to_cart,
    clear_user_cart,
    get_or_create_cart,
    remove_product_from_cart,
    update_product_quantity_in_cart,
)
from order_service.db.database import get_db
from order_service.db.init_db import init_db
from order_service.db.order_functions import create_order, get_order, get_user_orders
from order_service.db.schemas import (
    CartItemBase,
    CartQuantityUpdate,
    CartResponse,
    OrderCreate,
    OrderResponse,
    OrderStatusUpdate,
    PaymentStatusResponse,
    PaymentVerify,
    ProductStockResponse,
    RefundCreate,
    RefundDecision,
    RefundResponse,
    RestockRequest,
)
from order_service.db.status_functions import (
    cancel_order,
    confirm_payment,
    get_payment_status,
    initialize_payment,
    process_refund,
    request_refund,
    update_order_status,
)
from order_service.db.stock_functions import restock_product
from order_service.errors import OrderServiceError
from order_service.events import publish_order_event
from order_service.payments import PaymentProvider

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await init_db()
    logger.info("order_service started")
    yield


app = FastAPI(lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(OrderServiceError)
async def order_service_error_handler(request: Request, exc: OrderServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_payment_provider(settings: Settings = Depends(get_settings)) -> PaymentProvider:
    return PaymentProvider(settings.payment_service_url, timeout=settings.payment_timeout)


def _order_event_payload(order) -> dict:
    return {
        "order_id": order.id,
        "user_id": order.user_id,
        "status": order.status.value,
        "total_amount": str(order.total_amount),
    }


# Cart

@app.get("/cart", response_model=CartResponse)
async def get_cart(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await get_or_create_cart(db, user.id)


@app.post("/cart/add", response_model=CartResponse)
async def add_to_cart(
    item: CartItemBase,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await add_product_to_cart(db, user.id, item.product_id, item.quantity)


@app.patch("/cart/update/{product_id}", response_model=CartResponse)
async def update_cart_item(
    product_id: int,
    body: CartQuantityUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await update_product_quantity_in_cart(db, user.id, product_id, body.quantity)


@app.delete("/cart/remove/{product_id}", response_model=CartResponse)
async def remove_from_cart(
    product_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await remove_product_from_cart(db, user.id, product_id)


@app.delete("/cart/clear", response_model=CartResponse)
async def clear_cart(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await clear_user_cart(db, user.id)


# Orders

@app.post("/orders", response_model=OrderResponse, status_code=201)
async def place_order(
    body: OrderCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    order = await create_order(
        db,
        user.id,
        body.shipping_address.model_dump(),
        body.payment_method,
        settings=settings,
    )
    await publish_order_event("order_created", _order_event_payload(order), settings)
    return order


@app.get("/orders/my-orders", response_model=List[OrderResponse])
async def my_orders(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await get_user_orders(db, user.id)


@app.get("/orders/{order_id}", response_model=OrderResponse)
async def read_order(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await get_order(db, user.id, order_id)


@app.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_user_order(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    order = await cancel_order(db, user.id, order_id, settings=settings)
    await publish_order_event("order_cancelled", _order_event_payload(order), settings)
    return order


@app.patch("/orders/{order_id}/status", response_model=OrderResponse)
async def change_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    order = await update_order_status(db, order_id, body.status, body.tracking_number, settings=settings)
    payload = _order_event_payload(order)
    payload["tracking_number"] = order.tracking_number
    await publish_order_event("order_status_updated", payload, settings)
    return order


@app.post("/orders/{order_id}/refund", response_model=RefundResponse, status_code=201)
async def refund_order(
    order_id: int,
    body: RefundCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    refund = await request_refund(db, user.id, order_id, body.reason)
    await publish_order_event(
        "refund_requested",
        {"refund_id": refund.id, "order_id": order_id, "user_id": user.id},
        settings,
    )
    return refund


@app.patch("/refunds/{refund_id}", response_model=RefundResponse)
async def decide_refund(
    refund_id: int,
    body: RefundDecision,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    refund = await process_refund(db, refund_id, admin.id, body.approve)
    await publish_order_event(
        "refund_processed",
        {"refund_id": refund.id, "order_id": refund.order_id, "status": refund.status.value},
        settings,
    )
    return refund


# Payment

@app.post("/orders/{order_id}/payment", response_model=OrderResponse)
async def start_payment(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    return await initialize_payment(db, user.id, order_id, provider)


@app.get("/orders/{order_id}/payment", response_model=PaymentStatusResponse)
async def read_payment_status(
    order_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    return await get_payment_status(db, user.id, order_id, provider)


@app.post("/orders/{order_id}/payment/verify", response_model=OrderResponse)
async def verify_payment(
    order_id: int,
    body: PaymentVerify,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
    settings: Settings = Depends(get_settings),
):
    order = await confirm_payment(db, user.id, order_id, provider, body.reference)
    await publish_order_event("order_status_updated", _order_event_payload(order), settings)
    return order


# Products

@app.post("/products/{product_id}/restock", response_model=ProductStockResponse)
async def restock(
    product_id: int,
    body: RestockRequest,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await restock_product(db, product_id, body.quantity)


@app.get("/")
async def health_check():
    """Health check endpoint."""
    return {"status": "order_service running"}
