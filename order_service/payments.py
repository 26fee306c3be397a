# order_service/payments.py
"""Client for the payment service.

The provider is opaque to the order workflow: ``initialize`` opens a
transaction for an order and returns its reference, ``get_transaction``
reads a transaction back so the caller can check who it pays for and
whether it completed.
"""
import logging
import uuid
from typing import Optional

import httpx

from order_service.errors import PaymentProviderError

logger = logging.getLogger(__name__)


class PaymentProvider:
    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            logger.error("Payment service %s %s failed: %s", method, url, exc)
            raise PaymentProviderError("Payment service error") from exc
        except ValueError as exc:
            raise PaymentProviderError("Payment service returned an invalid response") from exc

    async def initialize(self, order) -> str:
        payload = {
            "order_id": order.id,
            "payment_method": order.payment_method,
            "amount": str(order.total_amount),
            "payment_reference": f"order_{order.id}_{uuid.uuid4().hex}",
        }
        data = await self._request("POST", "/transactions/", json=payload)
        if data.get("status") == "failed":
            raise PaymentProviderError("Payment was declined")
        if data.get("id") is None:
            raise PaymentProviderError("Payment service did not return a transaction id")
        return str(data["id"])

    async def get_transaction(self, reference: str) -> dict:
        return await self._request("GET", f"/transactions/{reference}")
