"""Faker-based data generators for Locust load test scenarios.

Each generator produces payloads that pass the payments validation rules
(amount bounds, known payment methods and gateways) and match the exact
field names expected by the API's Pydantic request schemas.
"""

import random
import uuid

from faker import Faker

fake = Faker()

PAYMENT_METHODS = ["CARD", "DIGITAL_WALLET", "BANK_TRANSFER", "CASH"]
AUTO_GATEWAYS = ["STRIPE", "PAYPAL", "SQUARE", "MOCK"]
CARD_BRANDS = ["VISA", "MASTERCARD", "AMEX"]


def user_id() -> str:
    return f"user-lt-{uuid.uuid4().hex[:8]}"


def order_data(user: str, amount: float | None = None) -> dict:
    """Generate RegisterOrderRequest payload for seeding the fake Order service."""
    return {
        "order_id": f"ord-lt-{uuid.uuid4().hex[:10]}",
        "total_amount": amount or round(random.uniform(4.50, 120.00), 2),
        "user_id": user,
    }


def payment_data(order: dict, method: str | None = None, gateway: str | None = None) -> dict:
    """Generate CreatePaymentRequest payload for a seeded order."""
    method = method or random.choice(PAYMENT_METHODS)
    payload = {
        "order_id": order["order_id"],
        "user_id": order["user_id"],
        "payment_method": method,
        "gateway": gateway or random.choice(AUTO_GATEWAYS),
        "amount": order["total_amount"],
        "currency": "USD",
        "description": f"{fake.word().title()} loaf and {fake.word()} pastries",
    }
    if method == "CARD":
        payload["card_last_four"] = str(random.randint(1000, 9999))
        payload["card_brand"] = random.choice(CARD_BRANDS)
        payload["card_type"] = random.choice(["CREDIT", "DEBIT"])
    elif method == "DIGITAL_WALLET":
        payload["digital_wallet_provider"] = random.choice(["APPLE_PAY", "GOOGLE_PAY"])
    elif method == "BANK_TRANSFER":
        payload["bank_name"] = fake.company()
    return payload


def refund_data(payment_id: str, amount: float) -> dict:
    """Generate CreateRefundRequest payload for part of a settled payment."""
    return {
        "payment_id": payment_id,
        "amount": amount,
        "reason": random.choice(["Damaged item", "Wrong order", "Customer request", "Late delivery"]),
    }
