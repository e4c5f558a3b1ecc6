"""Daily revenue — revenue analytics aggregation."""

from protean.core.projector import on
from protean.exceptions import ObjectNotFoundError
from protean.fields import Float, Integer, String
from protean.utils.globals import current_domain

from payments.accounting import as_float, to_money
from payments.domain import payments
from payments.payment.events import PaymentSettled, PaymentStatusUpdated, RefundSettled
from payments.payment.payment import Payment, PaymentStatus, RefundStatus


@payments.projection
class DailyRevenue:
    date = String(identifier=True, max_length=10, required=True)  # "YYYY-MM-DD"
    currency = String(default="USD")
    total_revenue = Float(default=0.0)
    total_fees = Float(default=0.0)
    total_refunded = Float(default=0.0)
    net_revenue = Float(default=0.0)
    transaction_count = Integer(default=0)
    refund_count = Integer(default=0)


def _record_for(date_key: str, currency: str) -> DailyRevenue:
    try:
        return current_domain.repository_for(DailyRevenue).get(date_key)
    except ObjectNotFoundError:
        return DailyRevenue(date=date_key, currency=currency)


def _recompute_net(record: DailyRevenue) -> None:
    record.net_revenue = as_float(
        to_money(record.total_revenue) - to_money(record.total_fees) - to_money(record.total_refunded)
    )


def _book_revenue(day, currency: str, amount, fee) -> None:
    record = _record_for(day.isoformat(), currency)
    record.total_revenue = as_float(to_money(record.total_revenue) + to_money(amount))
    record.total_fees = as_float(to_money(record.total_fees) + to_money(fee or 0.0))
    record.transaction_count = (record.transaction_count or 0) + 1
    _recompute_net(record)
    current_domain.repository_for(DailyRevenue).add(record)


@payments.projector(projector_for=DailyRevenue, aggregates=[Payment])
class DailyRevenueProjector:
    @on(PaymentSettled)
    def on_payment_settled(self, event):
        if event.status != PaymentStatus.COMPLETED.value:
            return

        _book_revenue(event.settled_at.date(), event.currency, event.amount, event.gateway_fee)

    @on(PaymentStatusUpdated)
    def on_payment_status_updated(self, event):
        # Payments confirmed by hand never pass through settlement
        if event.status != PaymentStatus.COMPLETED.value:
            return

        _book_revenue(event.updated_at.date(), event.currency, event.amount, event.gateway_fee)

    @on(RefundSettled)
    def on_refund_settled(self, event):
        if event.status != RefundStatus.COMPLETED.value:
            return

        record = _record_for(event.settled_at.date().isoformat(), event.currency)
        record.total_refunded = as_float(to_money(record.total_refunded) + to_money(event.amount))
        record.refund_count = (record.refund_count or 0) + 1
        _recompute_net(record)
        current_domain.repository_for(DailyRevenue).add(record)
