"""Domain error taxonomy for payments and refunds.

Rule violations subclass Protean's ``ValidationError`` so generic callers can
keep treating them as validation failures, while the API layer uses the
``code`` attribute to build machine-readable error payloads.
"""

from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, ValidationError


class PaymentRuleViolation(ValidationError):
    """Base class for lifecycle rule violations on payments and refunds."""

    code = "PAYMENT_SERVICE_ERROR"
    field = "status"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.message = message
        super().__init__({field or self.field: [message]})

    def __str__(self) -> str:
        return self.message


class InvalidStatusTransition(PaymentRuleViolation):
    code = "INVALID_STATUS_TRANSITION"


class RefundNotAllowed(PaymentRuleViolation):
    code = "REFUND_NOT_ALLOWED"


class AmountExceedsRefundable(PaymentRuleViolation):
    code = "AMOUNT_EXCEEDS_REFUNDABLE"
    field = "amount"


class RetryNotAllowed(PaymentRuleViolation):
    code = "RETRY_NOT_ALLOWED"


class DuplicatePayment(PaymentRuleViolation):
    code = "DUPLICATE_PAYMENT"
    field = "order_id"


class OrderNotFound(ObjectNotFoundError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__({"order_id": [f"Order {order_id} not found"]})


class CollaboratorUnavailable(Exception):
    """A remote collaborator (the Order service) could not be reached."""

    code = "SERVICE_UNAVAILABLE"

    def __init__(self, service: str, detail: str = "") -> None:
        self.service = service
        self.detail = detail
        super().__init__(f"{service} is unavailable" + (f": {detail}" if detail else ""))


class GatewayError(Exception):
    """The payment gateway failed to produce an outcome.

    Only ever raised inside a settlement unit, which converts it into a
    FAILED payment or refund.
    """


# A save lost the aggregate version check against a concurrent writer.
ConflictError = ExpectedVersionError
