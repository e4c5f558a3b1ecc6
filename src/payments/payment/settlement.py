"""Settlement — event handlers that drive payments and refunds through the gateway.

Each handler is an independent unit of work scheduled by a domain event:

- PaymentCreated / PaymentRetried → settle the payment (SALE)
- PaymentStatusUpdated to PROCESSING → settle the payment an administrator sent back
- RefundRequested (when ``refund_auto_settle`` is on) / RefundApproved → settle the refund

A unit never raises back to its trigger. Whatever goes wrong inside it is
converted into a FAILED payment or refund and logged. A process-local
single-flight guard keeps a second unit for the same payment or refund from
running while the first is still in flight.

The guard is released when the handler returns, which is before its unit of
work commits. A second unit that starts in that gap loads the old version of
the aggregate, and its save fails the version check with
``payments.errors.ConflictError`` instead of overwriting the first outcome.
"""

import structlog
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from payments.config import get_settings
from payments.domain import payments
from payments.gateway import get_gateway
from payments.payment.events import (
    PaymentCreated,
    PaymentRetried,
    PaymentStatusUpdated,
    RefundApproved,
    RefundRequested,
)
from payments.payment.payment import Payment, PaymentStatus, RefundStatus, TransactionType
from payments.utils.inflight import settlements

logger = structlog.get_logger(__name__)


@payments.event_handler(part_of=Payment)
class PaymentSettlementHandler:
    """Sends new, retried and re-opened payments to the gateway."""

    @handle(PaymentCreated)
    def on_payment_created(self, event: PaymentCreated) -> None:
        settle_payment(event.payment_id)

    @handle(PaymentRetried)
    def on_payment_retried(self, event: PaymentRetried) -> None:
        settle_payment(event.payment_id)

    @handle(PaymentStatusUpdated)
    def on_payment_status_updated(self, event: PaymentStatusUpdated) -> None:
        if event.status == PaymentStatus.PROCESSING.value:
            settle_payment(event.payment_id)


@payments.event_handler(part_of=Payment)
class RefundSettlementHandler:
    """Sends requested or approved refunds to the gateway."""

    @handle(RefundRequested)
    def on_refund_requested(self, event: RefundRequested) -> None:
        if not get_settings().refund_auto_settle:
            logger.info(
                "Refund awaiting approval",
                payment_id=str(event.payment_id),
                refund_id=str(event.refund_id),
            )
            return
        settle_refund(event.payment_id, event.refund_id)

    @handle(RefundApproved)
    def on_refund_approved(self, event: RefundApproved) -> None:
        settle_refund(event.payment_id, event.refund_id)


def settle_payment(payment_id: str) -> None:
    """Run one SALE for ``payment_id`` and record the outcome."""
    with settlements.attempt(f"payment:{payment_id}") as acquired:
        if not acquired:
            return

        repo = current_domain.repository_for(Payment)
        payment = repo.get(payment_id)

        try:
            status = PaymentStatus(payment.status)
            if status == PaymentStatus.PENDING:
                payment.start_processing()
            elif status != PaymentStatus.PROCESSING:
                logger.info(
                    "Payment not awaiting settlement, skipping",
                    payment_id=str(payment_id),
                    status=payment.status,
                )
                return

            # A SALE the gateway left pending is answered, not duplicated
            transaction = payment.pending_sale()
            if transaction is None:
                transaction = payment.open_transaction(TransactionType.SALE)
            result = get_gateway().process_payment(
                payment.payment_method,
                payment.gateway,
                payment.amount,
                payment.currency,
            )
            payment.apply_settlement(transaction, result)
            logger.info(
                "Payment settled",
                payment_id=str(payment.id),
                reference=payment.reference,
                status=payment.status,
                gateway_transaction_id=result.gateway_transaction_id,
            )
        except Exception as exc:
            logger.error(
                "Payment settlement failed",
                payment_id=str(payment_id),
                error=str(exc),
                exc_info=True,
            )
            payment = repo.get(payment_id)
            if not payment.fail_settlement(str(exc)):
                return

        # Written on commit, after the key is released; a stale save raises ConflictError
        repo.add(payment)


def settle_refund(payment_id: str, refund_id: str) -> None:
    """Run one gateway refund for ``refund_id`` and re-derive the payment's refunded total."""
    with settlements.attempt(f"refund:{refund_id}") as acquired:
        if not acquired:
            return

        repo = current_domain.repository_for(Payment)
        payment = repo.get(payment_id)

        try:
            refund = payment.get_refund(refund_id)
            status = RefundStatus(refund.status)
            if status == RefundStatus.PENDING:
                payment.start_refund_processing(refund_id)
            elif status != RefundStatus.PROCESSING:
                logger.info(
                    "Refund not awaiting settlement, skipping",
                    refund_id=str(refund_id),
                    status=refund.status,
                )
                return

            if not payment.refund_fits_balance(refund_id):
                # Another refund completed since this one was requested
                payment.fail_refund(
                    refund_id,
                    "Refund amount exceeds refundable amount",
                    "AMOUNT_EXCEEDS_REFUNDABLE",
                )
            else:
                result = get_gateway().process_refund(payment.gateway, refund.amount, refund.currency)
                payment.apply_refund_settlement(refund_id, result)
                logger.info(
                    "Refund settled",
                    payment_id=str(payment.id),
                    refund_id=str(refund_id),
                    status=refund.status,
                    payment_status=payment.status,
                )
        except Exception as exc:
            logger.error(
                "Refund settlement failed",
                payment_id=str(payment_id),
                refund_id=str(refund_id),
                error=str(exc),
                exc_info=True,
            )
            payment = repo.get(payment_id)
            if not payment.fail_refund(refund_id, f"Refund processing error: {exc}", "PROCESSING_ERROR"):
                return

        repo.add(payment)
