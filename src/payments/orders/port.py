"""Order service port (abstract interface).

The Order service owns order totals and wants to hear about payment status
changes. Payments only ever needs the two calls below.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class OrderSummary:
    """The parts of a remote order that payment creation checks against."""

    order_id: str
    total_amount: float
    user_id: str | None = None
    status: str | None = None
    extra: dict = field(default_factory=dict)


class OrderService(ABC):
    """Abstract Order service interface."""

    @abstractmethod
    def get_order(self, order_id: str) -> OrderSummary:
        """Fetch an order.

        Raises ``OrderNotFound`` when the order does not exist and
        ``CollaboratorUnavailable`` when the service cannot be reached.
        """
        ...

    @abstractmethod
    def notify_payment_status(self, order_id: str, payload: dict) -> None:
        """Push a payment status update for an order."""
        ...
