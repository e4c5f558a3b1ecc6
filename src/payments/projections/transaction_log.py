"""Transaction log — flat, queryable copy of every gateway interaction."""

from protean.core.projector import on
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from payments.domain import payments
from payments.payment.events import TransactionRecorded
from payments.payment.payment import Payment


@payments.projection
class TransactionLogEntry:
    transaction_id = Identifier(identifier=True, required=True)
    payment_id = Identifier(required=True)
    refund_id = Identifier()
    transaction_type = String(max_length=20, required=True)
    status = String(max_length=20, required=True)
    amount = Float(required=True)
    currency = String(max_length=3, default="USD")
    gateway_transaction_id = String(max_length=100)
    gateway_response = Text()
    failure_reason = String(max_length=500)
    failure_code = String(max_length=50)
    created_at = DateTime()
    processed_at = DateTime()


@payments.projector(projector_for=TransactionLogEntry, aggregates=[Payment])
class TransactionLogProjector:
    @on(TransactionRecorded)
    def on_transaction_recorded(self, event):
        repo = current_domain.repository_for(TransactionLogEntry)
        try:
            record = repo.get(str(event.transaction_id))
        except ObjectNotFoundError:
            record = TransactionLogEntry(
                transaction_id=str(event.transaction_id),
                payment_id=str(event.payment_id),
                transaction_type=event.transaction_type,
                status=event.status,
                amount=event.amount,
            )

        record.refund_id = event.refund_id
        record.status = event.status
        record.amount = event.amount
        record.currency = event.currency
        record.gateway_transaction_id = event.gateway_transaction_id
        record.gateway_response = event.gateway_response
        record.failure_reason = event.failure_reason
        record.failure_code = event.failure_code
        record.created_at = event.created_at
        record.processed_at = event.processed_at
        repo.add(record)
