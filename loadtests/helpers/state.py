"""Per-user journey state for payments load test scenarios."""

from dataclasses import dataclass, field


@dataclass
class PaymentState:
    """Tracks state for a payment lifecycle."""

    user_id: str | None = None
    order: dict | None = None
    payment_id: str | None = None
    amount: float = 0.0
    current_status: str = "PENDING"
    refund_ids: list[str] = field(default_factory=list)

    @property
    def headers(self) -> dict:
        return {"X-User-Id": self.user_id} if self.user_id else {}
