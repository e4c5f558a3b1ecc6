"""Payments domain API package."""

from payments.api.routes import payment_router, refund_router, transaction_router

__all__ = ["payment_router", "refund_router", "transaction_router"]
