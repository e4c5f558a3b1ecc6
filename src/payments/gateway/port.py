"""Payment gateway port (abstract interface).

Defines the contract the settlement handlers rely on. The simulator is the
only adapter; tests drive it deterministically through a seeded random
source and configurable success rates.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class GatewayOutcome(Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILURE = "failure"


@dataclass(frozen=True)
class GatewayResult:
    """Result of a single gateway interaction (sale, refund or void)."""

    outcome: GatewayOutcome
    gateway_transaction_id: str | None = None
    gateway_response: str | None = None
    raw_response: str | None = None
    gateway_fee: float = 0.0
    failure_reason: str | None = None
    failure_code: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is GatewayOutcome.SUCCESS

    @property
    def pending(self) -> bool:
        return self.outcome is GatewayOutcome.PENDING


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def process_payment(
        self,
        method: str,
        gateway: str,
        amount: float,
        currency: str,
    ) -> GatewayResult:
        """Run a SALE for the full payment amount."""
        ...

    @abstractmethod
    def process_refund(
        self,
        gateway: str,
        amount: float,
        currency: str,
    ) -> GatewayResult:
        """Refund part or all of a settled payment."""
        ...

    @abstractmethod
    def void_payment(
        self,
        gateway: str,
        amount: float,
        currency: str,
        gateway_transaction_id: str | None,
    ) -> GatewayResult:
        """Void a previously authorized payment."""
        ...
