"""Probabilistic payment gateway simulator.

Stands in for Stripe, PayPal, Square and the mock gateway: each interaction
is approved or declined with a fixed probability, and the MANUAL gateway
always answers "pending" until someone confirms the payment by hand.

All randomness comes from an injectable ``random.Random`` so tests can seed
it, or pin the success rates to 0.0 / 1.0 through ``configure()``.
"""

import json
import random
import time
from datetime import UTC, datetime

import structlog

from payments.accounting import ZERO, as_float, percentage_fee, to_money
from payments.config import get_settings
from payments.gateway.port import GatewayOutcome, GatewayResult, PaymentGateway

logger = structlog.get_logger(__name__)

MANUAL_GATEWAY = "MANUAL"
CARD_METHOD = "CARD"

PAYMENT_FAILURE_REASONS = (
    "Insufficient funds",
    "Card declined",
    "Invalid card number",
    "Expired card",
    "Gateway timeout",
)
PAYMENT_FAILURE_CODE = "DECLINED"

REFUND_FAILURE_REASONS = (
    "Original transaction not found",
    "Refund already processed",
    "Gateway timeout",
    "Invalid refund amount",
)
REFUND_FAILURE_CODE = "REFUND_FAILED"


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


class GatewaySimulator(PaymentGateway):
    """Simulated gateway with seedable outcomes."""

    def __init__(
        self,
        rng: random.Random | None = None,
        payment_success_rate: float | None = None,
        refund_success_rate: float | None = None,
        card_fee_rate: float | None = None,
        card_fixed_fee: float | None = None,
    ) -> None:
        settings = get_settings()
        self.rng = rng or random.Random()
        self.payment_success_rate = (
            settings.payment_success_rate if payment_success_rate is None else payment_success_rate
        )
        self.refund_success_rate = (
            settings.refund_success_rate if refund_success_rate is None else refund_success_rate
        )
        self.card_fee_rate = settings.card_fee_rate if card_fee_rate is None else card_fee_rate
        self.card_fixed_fee = settings.card_fixed_fee if card_fixed_fee is None else card_fixed_fee
        self.calls: list[dict] = []

    def configure(
        self,
        payment_success_rate: float | None = None,
        refund_success_rate: float | None = None,
        seed: int | None = None,
    ) -> None:
        """Adjust outcome probabilities (and optionally reseed) at runtime."""
        if payment_success_rate is not None:
            self.payment_success_rate = payment_success_rate
        if refund_success_rate is not None:
            self.refund_success_rate = refund_success_rate
        if seed is not None:
            self.rng.seed(seed)

    # ------------------------------------------------------------------
    # Port implementation
    # ------------------------------------------------------------------
    def process_payment(self, method: str, gateway: str, amount: float, currency: str) -> GatewayResult:
        self.calls.append(
            {"method": "process_payment", "payment_method": method, "gateway": gateway, "amount": amount}
        )
        if gateway == MANUAL_GATEWAY:
            return self._manual_pending("Manual payment requires confirmation")
        return self._simulate(method, amount, currency, transaction_type="sale")

    def process_refund(self, gateway: str, amount: float, currency: str) -> GatewayResult:
        self.calls.append({"method": "process_refund", "gateway": gateway, "amount": amount})
        if gateway == MANUAL_GATEWAY:
            return self._manual_pending("Manual refund requires confirmation")

        if self.rng.random() < self.refund_success_rate:
            return GatewayResult(
                outcome=GatewayOutcome.SUCCESS,
                gateway_transaction_id=self.generate_transaction_id(),
                gateway_response="Refund processed successfully",
                raw_response=json.dumps(
                    {
                        "status": "success",
                        "refund_amount": str(to_money(amount)),
                        "currency": currency,
                        "timestamp": _timestamp(),
                    }
                ),
            )
        return self._failure(REFUND_FAILURE_REASONS, REFUND_FAILURE_CODE)

    def void_payment(
        self,
        gateway: str,
        amount: float,
        currency: str,
        gateway_transaction_id: str | None,
    ) -> GatewayResult:
        self.calls.append(
            {
                "method": "void_payment",
                "gateway": gateway,
                "amount": amount,
                "gateway_transaction_id": gateway_transaction_id,
            }
        )
        if gateway == MANUAL_GATEWAY:
            return self._manual_pending("Manual void requires confirmation")
        # Voids carry no fee, whatever the payment method
        return self._simulate(None, amount, currency, transaction_type="void")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def calculate_fee(self, method: str | None, amount: float) -> float:
        """2.9% + 0.30 for card payments, nothing for every other method."""
        if method != CARD_METHOD:
            return as_float(ZERO)
        return as_float(percentage_fee(amount, self.card_fee_rate, self.card_fixed_fee))

    def generate_transaction_id(self) -> str:
        return f"GW-{int(time.time() * 1000)}-{self.rng.randint(10000, 99999)}"

    def _simulate(self, method: str | None, amount: float, currency: str, transaction_type: str) -> GatewayResult:
        if self.rng.random() < self.payment_success_rate:
            return GatewayResult(
                outcome=GatewayOutcome.SUCCESS,
                gateway_transaction_id=self.generate_transaction_id(),
                gateway_response="Transaction approved",
                raw_response=json.dumps(
                    {
                        "status": "success",
                        "transaction_type": transaction_type,
                        "amount": str(to_money(amount)),
                        "currency": currency,
                        "timestamp": _timestamp(),
                    }
                ),
                gateway_fee=self.calculate_fee(method, amount),
            )
        return self._failure(PAYMENT_FAILURE_REASONS, PAYMENT_FAILURE_CODE)

    def _failure(self, reasons: tuple[str, ...], code: str) -> GatewayResult:
        reason = self.rng.choice(reasons)
        logger.info("Gateway declined interaction", reason=reason, code=code)
        return GatewayResult(
            outcome=GatewayOutcome.FAILURE,
            gateway_transaction_id=self.generate_transaction_id(),
            gateway_response=reason,
            raw_response=json.dumps({"status": "failed", "error": reason, "timestamp": _timestamp()}),
            failure_reason=reason,
            failure_code=code,
        )

    def _manual_pending(self, message: str) -> GatewayResult:
        return GatewayResult(
            outcome=GatewayOutcome.PENDING,
            gateway_transaction_id=self.generate_transaction_id(),
            gateway_response=message,
            raw_response=json.dumps({"status": "pending", "message": "Manual confirmation required"}),
        )
