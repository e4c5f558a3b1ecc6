"""Administrative payment status override — command and handler."""

from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from payments.domain import payments
from payments.payment.payment import Payment


@payments.command(part_of="Payment")
class UpdatePaymentStatus:
    payment_id = Identifier(required=True)
    status = String(required=True, max_length=20)
    reason = String(max_length=1000)
    notes = Text()
    gateway_response = Text()


@payments.command_handler(part_of=Payment)
class UpdatePaymentStatusHandler:
    @handle(UpdatePaymentStatus)
    def update_status(self, command):
        repo = current_domain.repository_for(Payment)
        payment = repo.get(command.payment_id)
        payment.update_status(
            command.status,
            reason=command.reason,
            notes=command.notes,
            gateway_response=command.gateway_response,
        )
        repo.add(payment)
