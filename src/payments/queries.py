"""Read-side queries and statistics for payments, refunds and transactions.

Payments are read straight from the aggregate repository. Refunds and
transactions across payments are read from their projections
(RefundView, TransactionLogEntry).
"""

from collections import Counter, defaultdict
from datetime import datetime

from protean.utils.globals import current_domain

from payments.accounting import ZERO, as_float, money_sum, to_money
from payments.payment.payment import Payment, PaymentStatus, RefundStatus
from payments.payment.repository import SCAN_LIMIT
from payments.projections.refund_view import RefundView
from payments.projections.transaction_log import TransactionLogEntry


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
def payment_statistics(start: datetime | None = None, end: datetime | None = None) -> dict:
    """Counts and amounts grouped by status, method and gateway."""
    repo = current_domain.repository_for(Payment)
    if start is not None and end is not None:
        records = repo.find_created_between(start, end)
    else:
        records = repo.scan()

    by_status = {status.value: {"count": 0, "amount": 0.0} for status in PaymentStatus}
    amounts = defaultdict(lambda: ZERO)
    for payment in records:
        by_status[payment.status]["count"] += 1
        amounts[payment.status] += to_money(payment.amount)
    for status, amount in amounts.items():
        by_status[status]["amount"] = as_float(amount)

    counted = [p for p in records if p.status in (PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value)]
    return {
        "total_payments": len(records),
        "total_amount": as_float(money_sum(p.amount for p in records)),
        "completed_amount": as_float(
            money_sum(p.amount for p in records if p.status == PaymentStatus.COMPLETED.value)
        ),
        "total_fees": as_float(money_sum(p.gateway_fee for p in counted)),
        "total_refunded": as_float(money_sum(p.total_refunded for p in records)),
        "by_status": by_status,
        "by_method": dict(Counter(p.payment_method for p in records)),
        "by_gateway": dict(Counter(p.gateway for p in records)),
    }


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------
def _refund_query():
    return current_domain.repository_for(RefundView)._dao.query


def list_refunds(offset: int = 0, limit: int = 20, **filters):
    """Refunds matching exact-value ``filters``, newest first."""
    filters = {key: value for key, value in filters.items() if value is not None}
    query = _refund_query()
    if filters:
        query = query.filter(**filters)
    return query.order_by("-created_at").offset(offset).limit(limit).all()


def search_refunds(term: str, offset: int = 0, limit: int = 20) -> list[RefundView]:
    """Case-insensitive substring match over refund reference and reason."""
    needle = term.lower()
    matches = [
        refund
        for refund in _refund_query().order_by("-created_at").limit(SCAN_LIMIT).all().items
        if needle in (refund.reference or "").lower() or needle in (refund.reason or "").lower()
    ]
    return matches[offset : offset + limit]


def filter_refunds(
    status: str | None = None,
    requested_by: str | None = None,
    approved_by: str | None = None,
    min_amount: float | None = None,
    max_amount: float | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    offset: int = 0,
    limit: int = 20,
) -> list[RefundView]:
    criteria = {
        "status": status,
        "requested_by": requested_by,
        "approved_by": approved_by,
        "amount__gte": min_amount,
        "amount__lte": max_amount,
        "created_at__gte": start,
        "created_at__lte": end,
    }
    criteria = {key: value for key, value in criteria.items() if value is not None}
    query = _refund_query()
    if criteria:
        query = query.filter(**criteria)
    return query.order_by("-created_at").offset(offset).limit(limit).all().items


def refund_statistics(start: datetime | None = None, end: datetime | None = None) -> dict:
    query = _refund_query()
    if start is not None and end is not None:
        query = query.filter(created_at__gte=start, created_at__lte=end)
    records = query.limit(SCAN_LIMIT).all().items

    by_status = {}
    for status in RefundStatus:
        matching = [r for r in records if r.status == status.value]
        by_status[status.value] = {
            "count": len(matching),
            "amount": as_float(money_sum(r.amount for r in matching)),
        }

    return {
        "total_refunds": len(records),
        "total_refunded": by_status[RefundStatus.COMPLETED.value]["amount"],
        "by_status": by_status,
    }


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------
def get_transaction(transaction_id: str) -> TransactionLogEntry:
    return current_domain.repository_for(TransactionLogEntry).get(str(transaction_id))


def list_transactions(
    payment_id: str | None = None,
    status: str | None = None,
    transaction_type: str | None = None,
    offset: int = 0,
    limit: int = 20,
):
    criteria = {"payment_id": payment_id, "status": status, "transaction_type": transaction_type}
    criteria = {key: value for key, value in criteria.items() if value is not None}
    query = current_domain.repository_for(TransactionLogEntry)._dao.query
    if criteria:
        query = query.filter(**criteria)
    return query.order_by("-created_at").offset(offset).limit(limit).all()
