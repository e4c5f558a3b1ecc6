"""Order notifier — pushes payment status changes to the Order service.

Best effort: a notification that cannot be delivered is logged and dropped.
Nothing here retries or raises back into the payment lifecycle.
"""

import structlog
from protean.utils.mixins import handle

from payments.domain import payments
from payments.errors import CollaboratorUnavailable
from payments.orders import get_order_service
from payments.payment.events import PaymentCancelled, PaymentSettled, PaymentStatusUpdated
from payments.payment.payment import Payment, PaymentStatus

logger = structlog.get_logger(__name__)


@payments.event_handler(part_of=Payment)
class OrderNotifier:
    @handle(PaymentSettled)
    def on_payment_settled(self, event: PaymentSettled) -> None:
        _notify(event.order_id, event.payment_id, event.reference, event.status, event.amount, event.gateway_response)

    @handle(PaymentCancelled)
    def on_payment_cancelled(self, event: PaymentCancelled) -> None:
        _notify(
            event.order_id,
            event.payment_id,
            event.reference,
            PaymentStatus.CANCELLED.value,
            event.amount,
            event.gateway_response,
        )

    @handle(PaymentStatusUpdated)
    def on_payment_status_updated(self, event: PaymentStatusUpdated) -> None:
        _notify(event.order_id, event.payment_id, event.reference, event.status, event.amount, event.gateway_response)


def _notify(order_id, payment_id, reference, status, amount, gateway_response) -> None:
    payload = {
        "paymentId": str(payment_id),
        "paymentReference": reference,
        "status": status,
        "amount": amount,
        "gatewayResponse": gateway_response,
    }
    try:
        get_order_service().notify_payment_status(str(order_id), payload)
        logger.info("Order service notified", order_id=str(order_id), reference=reference, status=status)
    except CollaboratorUnavailable as exc:
        logger.warning("Order service unavailable for notification", order_id=str(order_id), error=str(exc))
    except Exception as exc:
        logger.error("Failed to notify order service", order_id=str(order_id), error=str(exc))
