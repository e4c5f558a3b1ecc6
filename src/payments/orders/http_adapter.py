"""HTTP adapter for the Order service, built on httpx."""

import httpx
import structlog

from payments.errors import CollaboratorUnavailable, OrderNotFound
from payments.orders.port import OrderService, OrderSummary

logger = structlog.get_logger(__name__)

SERVICE_NAME = "order-service"


class HttpOrderService(OrderService):
    """Talks to ``GET /api/orders/{id}`` and ``POST /api/orders/{id}/payment-update``."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def get_order(self, order_id: str) -> OrderSummary:
        try:
            response = self.client.get(f"/api/orders/{order_id}")
        except httpx.HTTPError as exc:
            logger.error("Order service request failed", order_id=order_id, error=str(exc))
            raise CollaboratorUnavailable(SERVICE_NAME, str(exc)) from exc

        if response.status_code == 404:
            raise OrderNotFound(order_id)
        if response.status_code >= 500:
            raise CollaboratorUnavailable(SERVICE_NAME, f"HTTP {response.status_code}")
        if response.status_code >= 400:
            # Anything else the service refuses is treated as an unknown order
            raise OrderNotFound(order_id)

        data = response.json()
        total = data.get("totalAmount", data.get("total_amount"))
        if total is None:
            raise CollaboratorUnavailable(SERVICE_NAME, "order payload has no total amount")

        return OrderSummary(
            order_id=str(data.get("id", order_id)),
            total_amount=float(total),
            user_id=data.get("userId") or data.get("user_id"),
            status=data.get("status"),
            extra=data,
        )

    def notify_payment_status(self, order_id: str, payload: dict) -> None:
        try:
            response = self.client.post(f"/api/orders/{order_id}/payment-update", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise CollaboratorUnavailable(SERVICE_NAME, str(exc)) from exc

    def close(self) -> None:
        self.client.close()
