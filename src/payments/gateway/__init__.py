"""Payment gateway factory.

Provides get_gateway() / set_gateway() to swap implementations. The
GatewaySimulator is the default; tests install a seeded instance.
"""

from payments.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway. Defaults to GatewaySimulator."""
    global _current_gateway
    if _current_gateway is None:
        # Imported here: the simulator module imports this package on load
        from payments.gateway.simulator import GatewaySimulator

        _current_gateway = GatewaySimulator()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    """Override the active payment gateway (useful for tests)."""
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    """Reset to default gateway."""
    global _current_gateway
    _current_gateway = None
