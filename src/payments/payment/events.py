"""Domain events for the Payment aggregate.

Payment owns its refunds and its transaction log, so every event in the
context is part of the Payment stream. Events serve three purposes:
- Scheduling settlement (PaymentCreated, PaymentRetried, RefundRequested,
  RefundApproved and a PaymentStatusUpdated back to PROCESSING are picked
  up by the settlement handlers)
- Notifying the Order service (PaymentSettled, PaymentCancelled,
  PaymentStatusUpdated)
- Feeding the read models under payments.projections
"""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from payments.domain import payments


@payments.event(part_of="Payment")
class PaymentCreated:
    """A payment was accepted for an order and awaits settlement."""

    __version__ = 1

    payment_id = Identifier(required=True)
    reference = String(required=True)
    order_id = Identifier(required=True)
    user_id = Identifier(required=True)
    payment_method = String(required=True)
    gateway = String(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    expires_at = DateTime()
    created_at = DateTime(required=True)


@payments.event(part_of="Payment")
class TransactionRecorded:
    """A gateway interaction was logged or its outcome was recorded."""

    __version__ = 1

    payment_id = Identifier(required=True)
    transaction_id = Identifier(required=True)
    refund_id = Identifier()
    transaction_type = String(required=True)
    status = String(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    gateway_transaction_id = String()
    gateway_response = Text()
    failure_reason = String()
    failure_code = String()
    created_at = DateTime(required=True)
    processed_at = DateTime()


@payments.event(part_of="Payment")
class PaymentSettled:
    """A settlement attempt concluded (completed, failed or back to pending)."""

    __version__ = 1

    payment_id = Identifier(required=True)
    reference = String(required=True)
    order_id = Identifier(required=True)
    user_id = Identifier(required=True)
    status = String(required=True)
    payment_method = String(required=True)
    gateway = String(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    gateway_fee = Float()
    net_amount = Float()
    gateway_transaction_id = String()
    gateway_response = Text()
    failure_reason = String()
    failure_code = String()
    settled_at = DateTime(required=True)


@payments.event(part_of="Payment")
class PaymentCancelled:
    __version__ = 1

    payment_id = Identifier(required=True)
    reference = String(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    reason = String()
    gateway_response = Text()
    cancelled_at = DateTime(required=True)


@payments.event(part_of="Payment")
class PaymentRetried:
    """A failed payment was sent back for another settlement attempt."""

    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    retry_count = Integer(required=True)
    retried_at = DateTime(required=True)


@payments.event(part_of="Payment")
class PaymentStatusUpdated:
    """An administrator moved a payment to a new status by hand."""

    __version__ = 1

    payment_id = Identifier(required=True)
    reference = String(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(max_length=3, default="USD")
    gateway_fee = Float(default=0.0)
    previous_status = String(required=True)
    status = String(required=True)
    reason = String()
    notes = Text()
    gateway_response = Text()
    updated_at = DateTime(required=True)


@payments.event(part_of="Payment")
class PaymentRefunded:
    """Completed refunds now cover the full payment amount."""

    __version__ = 1

    payment_id = Identifier(required=True)
    reference = String(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    total_refunded = Float(required=True)
    refunded_at = DateTime(required=True)


@payments.event(part_of="Payment")
class RefundRequested:
    __version__ = 1

    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    reference = String(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    reason = String()
    requested_by = Identifier(required=True)
    notes = Text()
    requested_at = DateTime(required=True)


@payments.event(part_of="Payment")
class RefundApproved:
    __version__ = 1

    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    approved_by = Identifier(required=True)
    approved_at = DateTime(required=True)


@payments.event(part_of="Payment")
class RefundRejected:
    __version__ = 1

    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    reason = String()
    rejected_by = Identifier(required=True)
    rejected_at = DateTime(required=True)


@payments.event(part_of="Payment")
class RefundSettled:
    """A refund settlement attempt concluded."""

    __version__ = 1

    payment_id = Identifier(required=True)
    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    status = String(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    gateway_refund_id = String()
    gateway_response = Text()
    failure_reason = String()
    failure_code = String()
    settled_at = DateTime(required=True)
