"""Order service factory.

Provides get_order_service() / set_order_service() to swap implementations:
- HttpOrderService when ``order_service_url`` is configured
- FakeOrderService otherwise (development and tests)
"""

from payments.config import get_settings
from payments.orders.fake_adapter import FakeOrderService
from payments.orders.http_adapter import HttpOrderService
from payments.orders.port import OrderService

_current_service: OrderService | None = None


def get_order_service() -> OrderService:
    """Return the current Order service adapter."""
    global _current_service
    if _current_service is None:
        settings = get_settings()
        if settings.order_service_url:
            _current_service = HttpOrderService(settings.order_service_url, timeout=settings.order_service_timeout)
        else:
            _current_service = FakeOrderService()
    return _current_service


def set_order_service(service: OrderService) -> None:
    """Override the active Order service (useful for tests)."""
    global _current_service
    _current_service = service


def reset_order_service() -> None:
    """Reset to the configured default."""
    global _current_service
    _current_service = None
