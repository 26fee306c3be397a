"""Tests for the HTTP API."""

from decimal import Decimal

from order_service.main import app, get_payment_provider

from conftest import SHIPPING_ADDRESS
from test_payments import FakePaymentService


def auth(token):
    return {"Authorization": f"Bearer {token}"}


ORDER_BODY = {"shipping_address": SHIPPING_ADDRESS, "payment_method": "chapa"}


class TestAuth:
    async def test_health(self, api_client):
        response = await api_client.get("/")
        assert response.status_code == 200
        assert response.json() == {"status": "order_service running"}

    async def test_missing_token(self, api_client):
        response = await api_client.get("/cart")
        assert response.status_code == 401

    async def test_bad_token(self, api_client):
        response = await api_client.get("/cart", headers=auth("not-a-jwt"))
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token"

    async def test_admin_routes_need_admin(self, api_client, user_token):
        response = await api_client.patch(
            "/orders/1/status", json={"status": "paid"}, headers=auth(user_token(1))
        )
        assert response.status_code == 403


class TestCheckoutFlow:
    async def test_cart_to_order(self, api_client, user_token, make_product, read_product):
        product_id = await make_product(price="100.00", stock=5)
        headers = auth(user_token(1))

        response = await api_client.post("/cart/add", json={"product_id": product_id, "quantity": 2}, headers=headers)
        assert response.status_code == 200
        assert response.json()["items"][0]["quantity"] == 2

        response = await api_client.post("/orders", json=ORDER_BODY, headers=headers)
        assert response.status_code == 201
        order = response.json()
        assert order["status"] == "pending"
        assert Decimal(order["subtotal"]) == Decimal("200")
        assert Decimal(order["tax"]) == Decimal("30")
        assert Decimal(order["total_amount"]) == Decimal("380")
        assert order["items"][0]["product_id"] == product_id
        assert Decimal(order["items"][0]["price_at_purchase"]) == Decimal("100")

        cart = (await api_client.get("/cart", headers=headers)).json()
        assert cart["items"] == []
        assert (await read_product(product_id)).stock == 3

        listed = (await api_client.get("/orders/my-orders", headers=headers)).json()
        assert [o["id"] for o in listed] == [order["id"]]

        response = await api_client.get(f"/orders/{order['id']}", headers=auth(user_token(2)))
        assert response.status_code == 404

    async def test_empty_cart(self, api_client, user_token):
        response = await api_client.post("/orders", json=ORDER_BODY, headers=auth(user_token(1)))
        assert response.status_code == 400
        assert response.json()["error"] == "EmptyCartError"

    async def test_insufficient_stock_body(self, api_client, user_token, make_product, fill_cart):
        product_id = await make_product(stock=1)
        await fill_cart(1, [(product_id, 3)])

        response = await api_client.post("/orders", json=ORDER_BODY, headers=auth(user_token(1)))

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "InsufficientStockError"
        assert body["items"] == [{"product_id": product_id, "requested": 3, "available": 1}]

    async def test_invalid_body(self, api_client, user_token):
        response = await api_client.post(
            "/orders", json={"payment_method": "chapa"}, headers=auth(user_token(1))
        )
        assert response.status_code == 422

    async def test_cart_update_and_remove(self, api_client, user_token, make_product):
        product_id = await make_product(stock=5)
        headers = auth(user_token(1))
        await api_client.post("/cart/add", json={"product_id": product_id}, headers=headers)

        response = await api_client.patch(f"/cart/update/{product_id}", json={"quantity": 0}, headers=headers)
        assert response.status_code == 400

        response = await api_client.patch(f"/cart/update/{product_id}", json={"quantity": 4}, headers=headers)
        assert response.json()["items"][0]["quantity"] == 4

        response = await api_client.delete(f"/cart/remove/{product_id}", headers=headers)
        assert response.json()["items"] == []

        response = await api_client.delete("/cart/clear", headers=headers)
        assert response.status_code == 200


class TestLifecycle:
    async def test_cancel_status_and_refund(self, api_client, user_token, make_product, fill_cart):
        user = auth(user_token(1))
        admin = auth(user_token(100, role="admin"))

        product_id = await make_product(stock=10)
        await fill_cart(1, [(product_id, 1)])
        first = (await api_client.post("/orders", json=ORDER_BODY, headers=user)).json()

        response = await api_client.post(f"/orders/{first['id']}/cancel", headers=user)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        response = await api_client.post(f"/orders/{first['id']}/cancel", headers=user)
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransitionError"

        await fill_cart(1, [(product_id, 1)])
        second = (await api_client.post("/orders", json=ORDER_BODY, headers=user)).json()

        response = await api_client.post(f"/orders/{second['id']}/refund", json={"reason": "Too early"}, headers=user)
        assert response.status_code == 409

        response = await api_client.patch(
            f"/orders/{second['id']}/status",
            json={"status": "shipped", "tracking_number": "ET42"},
            headers=admin,
        )
        assert response.status_code == 200
        assert response.json()["tracking_number"] == "ET42"

        response = await api_client.patch(f"/orders/{second['id']}/status", json={"status": "pending"}, headers=admin)
        assert response.status_code == 409

        await api_client.patch(f"/orders/{second['id']}/status", json={"status": "delivered"}, headers=admin)

        response = await api_client.post(f"/orders/{second['id']}/refund", json={"reason": "Damaged"}, headers=user)
        assert response.status_code == 201
        refund = response.json()
        assert refund["status"] == "pending"

        response = await api_client.post(f"/orders/{second['id']}/refund", json={"reason": "Again"}, headers=user)
        assert response.status_code == 409
        assert response.json()["error"] == "DuplicateRefundError"

        response = await api_client.patch(f"/refunds/{refund['id']}", json={"approve": True}, headers=user)
        assert response.status_code == 403
        response = await api_client.patch(f"/refunds/{refund['id']}", json={"approve": True}, headers=admin)
        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert response.json()["admin_approver_id"] == 100

    async def test_payment_flow(self, api_client, user_token, make_product, fill_cart):
        service = FakePaymentService("completed")
        app.dependency_overrides[get_payment_provider] = service.provider
        user = auth(user_token(1))

        product_id = await make_product(stock=10)
        await fill_cart(1, [(product_id, 1)])
        order = (await api_client.post("/orders", json=ORDER_BODY, headers=user)).json()

        response = await api_client.post(f"/orders/{order['id']}/payment", headers=user)
        assert response.status_code == 200
        assert response.json()["payment_reference"] == "1"

        response = await api_client.get(f"/orders/{order['id']}/payment", headers=user)
        assert response.status_code == 200
        assert response.json()["payment_status"] == "completed"
        assert Decimal(response.json()["amount"]) == Decimal(order["total_amount"])

        response = await api_client.post(
            f"/orders/{order['id']}/payment/verify", json={"reference": "2"}, headers=user
        )
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

        response = await api_client.post(f"/orders/{order['id']}/payment/verify", json={}, headers=user)
        assert response.status_code == 200
        assert response.json()["status"] == "paid"

    async def test_restock(self, api_client, user_token, make_product):
        product_id = await make_product(stock=0)
        response = await api_client.post(
            f"/products/{product_id}/restock", json={"quantity": 3}, headers=auth(user_token(100, role="admin"))
        )
        assert response.status_code == 200
        assert response.json()["stock"] == 3
