import random

import pytest
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def payments_bed():
    from payments.domain import payments

    bed = DomainFixture(payments)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(payments_bed):
    with payments_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def _collaborators():
    """Fresh settings, a seeded always-approving gateway and an empty fake Order service per test."""
    from payments.config import reset_settings
    from payments.gateway import reset_gateway, set_gateway
    from payments.gateway.simulator import GatewaySimulator
    from payments.orders import reset_order_service, set_order_service
    from payments.orders.fake_adapter import FakeOrderService

    reset_settings()
    set_gateway(GatewaySimulator(rng=random.Random(42), payment_success_rate=1.0, refund_success_rate=1.0))
    set_order_service(FakeOrderService())
    yield
    reset_gateway()
    reset_order_service()
    reset_settings()


@pytest.fixture()
def gateway():
    from payments.gateway import get_gateway

    return get_gateway()


@pytest.fixture()
def order_service():
    from payments.orders import get_order_service

    return get_order_service()
