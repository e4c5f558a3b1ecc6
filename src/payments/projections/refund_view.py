"""Refund view — one row per refund, for lookups, search and reporting.

Settlement can run before this projector has seen RefundRequested (the
settlement handler may commit first), so every handler upserts and the
request handler never moves a status backwards.
"""

from protean.core.projector import on
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from payments.domain import payments
from payments.payment.events import RefundApproved, RefundRejected, RefundRequested, RefundSettled
from payments.payment.payment import Payment, RefundStatus


@payments.projection
class RefundView:
    refund_id = Identifier(identifier=True, required=True)
    payment_id = Identifier(required=True)
    order_id = Identifier()
    reference = String(max_length=50)
    status = String(max_length=20, required=True)
    amount = Float(required=True)
    currency = String(max_length=3, default="USD")
    reason = String(max_length=1000)
    requested_by = Identifier()
    approved_by = Identifier()
    gateway_refund_id = String(max_length=100)
    gateway_response = Text()
    failure_reason = String(max_length=500)
    failure_code = String(max_length=50)
    notes = Text()
    created_at = DateTime()
    updated_at = DateTime()
    processed_at = DateTime()
    completed_at = DateTime()
    failed_at = DateTime()


def _get_or_create(refund_id, payment_id, amount) -> RefundView:
    repo = current_domain.repository_for(RefundView)
    try:
        return repo.get(str(refund_id))
    except ObjectNotFoundError:
        return RefundView(
            refund_id=str(refund_id),
            payment_id=str(payment_id),
            status=RefundStatus.PENDING.value,
            amount=amount,
        )


@payments.projector(projector_for=RefundView, aggregates=[Payment])
class RefundViewProjector:
    @on(RefundRequested)
    def on_refund_requested(self, event):
        record = _get_or_create(event.refund_id, event.payment_id, event.amount)
        record.order_id = event.order_id
        record.reference = event.reference
        record.amount = event.amount
        record.currency = event.currency
        record.reason = event.reason
        record.requested_by = event.requested_by
        record.notes = event.notes
        record.created_at = event.requested_at
        record.updated_at = record.updated_at or event.requested_at
        current_domain.repository_for(RefundView).add(record)

    @on(RefundApproved)
    def on_refund_approved(self, event):
        repo = current_domain.repository_for(RefundView)
        try:
            record = repo.get(str(event.refund_id))
        except ObjectNotFoundError:
            return

        if record.status == RefundStatus.PENDING.value:
            record.status = RefundStatus.PROCESSING.value
        record.approved_by = event.approved_by
        record.processed_at = event.approved_at
        record.updated_at = event.approved_at
        repo.add(record)

    @on(RefundRejected)
    def on_refund_rejected(self, event):
        repo = current_domain.repository_for(RefundView)
        try:
            record = repo.get(str(event.refund_id))
        except ObjectNotFoundError:
            return

        record.status = RefundStatus.FAILED.value
        record.failure_reason = event.reason
        record.approved_by = event.rejected_by
        record.failed_at = event.rejected_at
        record.updated_at = event.rejected_at
        repo.add(record)

    @on(RefundSettled)
    def on_refund_settled(self, event):
        record = _get_or_create(event.refund_id, event.payment_id, event.amount)
        record.order_id = event.order_id
        record.status = event.status
        record.gateway_refund_id = event.gateway_refund_id
        record.gateway_response = event.gateway_response
        record.failure_reason = event.failure_reason
        record.failure_code = event.failure_code
        record.processed_at = record.processed_at or event.settled_at
        record.updated_at = event.settled_at
        if event.status == RefundStatus.COMPLETED.value:
            record.completed_at = event.settled_at
        elif event.status == RefundStatus.FAILED.value:
            record.failed_at = event.settled_at
        current_domain.repository_for(RefundView).add(record)
