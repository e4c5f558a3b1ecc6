"""Payment creation — command and handler.

Validates a payment request against the Order service and the configured
limits, then persists a PENDING Payment. Settlement is not part of this unit:
the PaymentCreated event schedules it (see payments.payment.settlement).
"""

import json
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from payments.accounting import money_sum, to_money
from payments.config import get_settings
from payments.domain import payments
from payments.errors import DuplicatePayment
from payments.orders import get_order_service
from payments.payment.payment import GatewayName, Payment
from payments.utils.inflight import SingleFlight

logger = structlog.get_logger(__name__)

# Serialises creation per order id within this process
creations = SingleFlight()


@payments.command(part_of="Payment")
class CreatePayment:
    """Create a payment for an order."""

    order_id = Identifier(required=True)
    user_id = Identifier(required=True)
    payment_method = String(required=True, max_length=20)
    amount = Float(required=True)
    currency = String(max_length=3, default="USD")
    gateway = String(max_length=20, default=GatewayName.MOCK.value)
    description = String(max_length=500)
    card_last_four = String(max_length=4)
    card_brand = String(max_length=20)
    card_type = String(max_length=20)
    digital_wallet_provider = String(max_length=50)
    bank_name = String(max_length=100)
    external_transaction_id = String(max_length=100)
    notes = Text()
    metadata = Text()  # JSON object


@payments.command_handler(part_of=Payment)
class CreatePaymentHandler:
    @handle(CreatePayment)
    def create_payment(self, command):
        amount = to_money(command.amount)
        if amount <= 0:
            raise ValidationError({"amount": ["Payment amount must be greater than zero"]})

        with creations.attempt(f"order:{command.order_id}") as acquired:
            if not acquired:
                raise DuplicatePayment(f"Payment already being created for order: {command.order_id}")

            # Checked first: a resubmitted order is a duplicate whatever else is wrong with it
            repo = current_domain.repository_for(Payment)
            if repo.exists_for_order(command.order_id):
                raise DuplicatePayment(f"Payment already exists for order: {command.order_id}")

            _validate_against_order(command.order_id, amount)
            _validate_limits(command.user_id, amount)

            payment = Payment.create(
                order_id=command.order_id,
                user_id=command.user_id,
                payment_method=command.payment_method,
                amount=command.amount,
                currency=command.currency or "USD",
                gateway=command.gateway or GatewayName.MOCK.value,
                description=command.description,
                card_last_four=command.card_last_four,
                card_brand=command.card_brand,
                card_type=command.card_type,
                digital_wallet_provider=command.digital_wallet_provider,
                bank_name=command.bank_name,
                external_transaction_id=command.external_transaction_id,
                notes=command.notes,
                metadata=json.loads(command.metadata) if command.metadata else None,
                expiry_minutes=get_settings().payment_expiry_minutes,
            )
            repo.add(payment)

        logger.info(
            "Payment created",
            payment_id=str(payment.id),
            reference=payment.reference,
            order_id=str(command.order_id),
            amount=payment.amount,
        )
        return str(payment.id)


def _validate_against_order(order_id: str, amount) -> None:
    """The order must exist and its total must equal the payment amount."""
    order = get_order_service().get_order(str(order_id))
    order_total = to_money(order.total_amount)
    if amount != order_total:
        raise ValidationError(
            {"amount": [f"Payment amount ({amount}) does not match order total amount ({order_total})"]}
        )


def _validate_limits(user_id: str, amount) -> None:
    settings = get_settings()

    if amount < to_money(settings.min_payment_amount):
        raise ValidationError({"amount": [f"Payment amount is below minimum: {settings.min_payment_amount:.2f}"]})
    if amount > to_money(settings.max_payment_amount):
        raise ValidationError({"amount": [f"Payment amount exceeds maximum: {settings.max_payment_amount:.2f}"]})

    start_of_day = datetime.now(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
    repo = current_domain.repository_for(Payment)
    daily_total = money_sum(p.amount for p in repo.payments_counted_since(user_id, start_of_day))
    if daily_total + amount > to_money(settings.daily_payment_limit):
        raise ValidationError({"amount": ["Daily payment limit exceeded"]})
