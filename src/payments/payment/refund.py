"""Payment refund — commands and handler.

Handles refund requests and their review. Approved refunds (and, with
``refund_auto_settle`` on, freshly requested ones) are settled by
payments.payment.settlement.
"""

import json

import structlog
from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from payments.domain import payments
from payments.payment.payment import Payment

logger = structlog.get_logger(__name__)


@payments.command(part_of="Payment")
class RequestRefund:
    """Request a full or partial refund for a payment."""

    payment_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String(max_length=1000)
    requested_by = Identifier(required=True)
    notes = Text()
    metadata = Text()  # JSON object


@payments.command(part_of="Payment")
class ApproveRefund:
    refund_id = Identifier(required=True)
    approved_by = Identifier(required=True)


@payments.command(part_of="Payment")
class RejectRefund:
    refund_id = Identifier(required=True)
    reason = String(max_length=1000)
    rejected_by = Identifier(required=True)


@payments.command_handler(part_of=Payment)
class RefundHandler:
    @handle(RequestRefund)
    def request_refund(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        refund = payment.request_refund(
            amount=command.amount,
            reason=command.reason,
            requested_by=command.requested_by,
            notes=command.notes,
            metadata=json.loads(command.metadata) if command.metadata else None,
        )
        repo.add(payment)

        logger.info(
            "Refund requested",
            payment_id=str(payment.id),
            refund_id=str(refund.id),
            reference=refund.reference,
            amount=refund.amount,
        )
        return str(refund.id)

    @handle(ApproveRefund)
    def approve_refund(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get_by_refund(command.refund_id)
        payment.approve_refund(command.refund_id, command.approved_by)
        repo.add(payment)

    @handle(RejectRefund)
    def reject_refund(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get_by_refund(command.refund_id)
        payment.reject_refund(command.refund_id, command.reason, command.rejected_by)
        repo.add(payment)
