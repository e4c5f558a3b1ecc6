"""Payments bounded context — Payment and Refund lifecycle.

Tracks payments against orders, settles them through a (simulated) gateway,
and reconciles full and partial refunds against the settled amount.
"""

import structlog
from protean.domain import Domain

payments = Domain(name="payments")

logger = structlog.get_logger(__name__)
