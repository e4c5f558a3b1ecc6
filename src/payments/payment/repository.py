"""Repository for the Payment aggregate."""

from datetime import datetime

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from payments.domain import payments
from payments.payment.payment import Payment, PaymentStatus, Refund

# QuerySets default to 100 rows; scans that feed totals need everything.
SCAN_LIMIT = 10_000


@payments.repository(part_of=Payment)
class PaymentRepository:
    """Query helpers on top of the standard CRUD operations."""

    def get_by_reference(self, reference: str) -> Payment:
        results = self._dao.query.filter(reference=reference).all()
        if not results.items:
            raise ObjectNotFoundError({"reference": [f"Payment {reference} not found"]})
        return self.get(results.first.id)

    def get_by_order(self, order_id: str) -> Payment:
        results = self._dao.query.filter(order_id=str(order_id)).all()
        if not results.items:
            raise ObjectNotFoundError({"order_id": [f"No payment found for order {order_id}"]})
        return self.get(results.first.id)

    def get_by_refund(self, refund_id: str) -> Payment:
        """Load the payment that owns ``refund_id``."""
        refund = current_domain.repository_for(Refund)._dao.get(str(refund_id))
        return self.get(refund.payment_id)

    def get_by_refund_reference(self, reference: str) -> Payment:
        results = current_domain.repository_for(Refund)._dao.query.filter(reference=reference).all()
        if not results.items:
            raise ObjectNotFoundError({"reference": [f"Refund {reference} not found"]})
        return self.get(results.first.payment_id)

    def exists_for_order(self, order_id: str) -> bool:
        return bool(self._dao.query.filter(order_id=str(order_id)).all().items)

    def find_by_user(self, user_id: str, offset: int = 0, limit: int = 20):
        return (
            self._dao.query.filter(user_id=str(user_id))
            .order_by("-created_at")
            .offset(offset)
            .limit(limit)
            .all()
        )

    def find_by_status(self, status: str, offset: int = 0, limit: int = 20):
        return (
            self._dao.query.filter(status=status)
            .order_by("-created_at")
            .offset(offset)
            .limit(limit)
            .all()
        )

    def find_all(self, offset: int = 0, limit: int = 20):
        return self._dao.query.order_by("-created_at").offset(offset).limit(limit).all()

    def find_created_between(self, start: datetime, end: datetime) -> list[Payment]:
        return (
            self._dao.query.filter(created_at__gte=start, created_at__lt=end)
            .limit(SCAN_LIMIT)
            .all()
            .items
        )

    def payments_counted_since(self, user_id: str, since: datetime) -> list[Payment]:
        """Payments by ``user_id`` since ``since`` that count towards the daily cap."""
        recent = (
            self._dao.query.filter(user_id=str(user_id), created_at__gte=since).limit(SCAN_LIMIT).all().items
        )
        counted = {PaymentStatus.COMPLETED.value, PaymentStatus.PENDING.value}
        return [p for p in recent if p.status in counted]

    def scan(self) -> list[Payment]:
        return self._dao.query.limit(SCAN_LIMIT).all().items
