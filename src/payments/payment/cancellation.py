"""Payment cancellation — command and handler.

Payments the gateway has already seen get a best-effort void there before
they are cancelled; a failing void never blocks the cancellation.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from payments.domain import payments
from payments.gateway import get_gateway
from payments.payment.payment import Payment

logger = structlog.get_logger(__name__)


@payments.command(part_of="Payment")
class CancelPayment:
    payment_id = Identifier(required=True)
    reason = String(max_length=1000)


@payments.command_handler(part_of=Payment)
class CancelPaymentHandler:
    @handle(CancelPayment)
    def cancel_payment(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        payment.ensure_cancellable()

        # Anything the gateway has already seen gets a void attempt
        if payment.gateway_payment_id or payment.authorized_at is not None:
            try:
                result = get_gateway().void_payment(
                    payment.gateway,
                    payment.amount,
                    payment.currency,
                    payment.gateway_payment_id,
                )
                payment.record_void(result)
            except Exception as exc:
                logger.warning("Gateway void failed", payment_id=str(payment.id), error=str(exc))

        payment.cancel(command.reason)
        repo.add(payment)

        logger.info("Payment cancelled", payment_id=str(payment.id), reference=payment.reference)
