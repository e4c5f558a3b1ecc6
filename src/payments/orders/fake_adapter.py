"""In-memory Order service for development and testing.

Orders are registered up front with their totals; every status
notification is recorded so tests can assert on it. Flip ``available`` off
to simulate the service being unreachable.
"""

from payments.errors import CollaboratorUnavailable, OrderNotFound
from payments.orders.port import OrderService, OrderSummary


class FakeOrderService(OrderService):
    """Configurable fake Order service."""

    def __init__(self) -> None:
        self.orders: dict[str, OrderSummary] = {}
        self.notifications: list[dict] = []
        self.available: bool = True
        self.fail_notifications: bool = False

    def register_order(self, order_id: str, total_amount: float, user_id: str | None = None) -> OrderSummary:
        order = OrderSummary(order_id=str(order_id), total_amount=total_amount, user_id=user_id, status="PENDING")
        self.orders[str(order_id)] = order
        return order

    def configure(self, available: bool = True, fail_notifications: bool = False) -> None:
        self.available = available
        self.fail_notifications = fail_notifications

    def get_order(self, order_id: str) -> OrderSummary:
        if not self.available:
            raise CollaboratorUnavailable("order-service", "fake service switched off")
        try:
            return self.orders[str(order_id)]
        except KeyError:
            raise OrderNotFound(str(order_id)) from None

    def notify_payment_status(self, order_id: str, payload: dict) -> None:
        if not self.available or self.fail_notifications:
            raise CollaboratorUnavailable("order-service", "fake service switched off")
        self.notifications.append({"order_id": str(order_id), **payload})

    def notifications_for(self, order_id: str) -> list[dict]:
        return [n for n in self.notifications if n["order_id"] == str(order_id)]
