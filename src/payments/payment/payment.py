"""Payment aggregate — the core of the payments domain.

A Payment is created PENDING for exactly one order, settled through the
gateway, and may later be refunded in one or more parts. The aggregate owns
its gateway transaction log and its refunds, so every rule that ties
refunded amounts, transaction history and payment status together is
checked in one place.

Payment state machine:
    PENDING    → PROCESSING, CANCELLED, COMPLETED
    PROCESSING → COMPLETED, FAILED, CANCELLED
    COMPLETED  → REFUNDED
    FAILED     → PROCESSING (retry, max 3 retries, or administrative override)
    CANCELLED, REFUNDED are terminal

Refund state machine:
    PENDING    → PROCESSING, FAILED
    PROCESSING → COMPLETED, FAILED
"""

import json
import random
from datetime import UTC, datetime, timedelta
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String, Text

from payments.accounting import as_float, money_sum, net_of_fee, to_money
from payments.domain import payments
from payments.errors import (
    AmountExceedsRefundable,
    InvalidStatusTransition,
    RefundNotAllowed,
    RetryNotAllowed,
)
from payments.payment.events import (
    PaymentCancelled,
    PaymentCreated,
    PaymentRefunded,
    PaymentRetried,
    PaymentSettled,
    PaymentStatusUpdated,
    RefundApproved,
    RefundRejected,
    RefundRequested,
    RefundSettled,
    TransactionRecorded,
)

MAX_RETRY_ATTEMPTS = 3
DEFAULT_EXPIRY_MINUTES = 15


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentStatus(Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentMethod(Enum):
    CASH = "CASH"
    CARD = "CARD"
    DIGITAL_WALLET = "DIGITAL_WALLET"
    BANK_TRANSFER = "BANK_TRANSFER"
    CRYPTO = "CRYPTO"


class GatewayName(Enum):
    STRIPE = "STRIPE"
    PAYPAL = "PAYPAL"
    SQUARE = "SQUARE"
    MANUAL = "MANUAL"
    MOCK = "MOCK"


class TransactionType(Enum):
    AUTHORIZATION = "AUTHORIZATION"
    CAPTURE = "CAPTURE"
    SALE = "SALE"
    VOID = "VOID"
    REFUND = "REFUND"


class TransactionStatus(Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class RefundStatus(Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


_VALID_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PROCESSING, PaymentStatus.CANCELLED, PaymentStatus.COMPLETED},
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: {PaymentStatus.PROCESSING},  # retry or override
    PaymentStatus.CANCELLED: set(),  # Terminal
    PaymentStatus.REFUNDED: set(),  # Terminal
}

_VALID_REFUND_TRANSITIONS = {
    RefundStatus.PENDING: {RefundStatus.PROCESSING, RefundStatus.FAILED},
    RefundStatus.PROCESSING: {RefundStatus.COMPLETED, RefundStatus.FAILED},
    RefundStatus.COMPLETED: set(),
    RefundStatus.FAILED: set(),
}

_CLOSED_TRANSACTION_STATUSES = {
    TransactionStatus.COMPLETED,
    TransactionStatus.FAILED,
    TransactionStatus.CANCELLED,
}


def generate_payment_reference(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return f"PAY-{now:%Y%m%d%H%M%S}-{random.randint(1000, 9999)}"


def generate_refund_reference(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return f"REF-{now:%Y%m%d%H%M%S}-{random.randint(100, 999)}"


def _dump_metadata(metadata) -> str | None:
    if metadata is None or isinstance(metadata, str):
        return metadata
    return json.dumps(metadata, default=str)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@payments.entity(part_of="Payment")
class PaymentTransaction:
    """One gateway interaction. Closed for changes once it has an outcome."""

    transaction_type = String(max_length=20, choices=TransactionType, required=True)
    status = String(max_length=20, choices=TransactionStatus, default=TransactionStatus.PENDING.value)
    amount = Float(required=True)
    currency = String(max_length=3, default="USD")
    refund_id = Identifier()
    gateway_transaction_id = String(max_length=100)
    gateway_response = Text()
    gateway_raw_response = Text()
    failure_reason = String(max_length=500)
    failure_code = String(max_length=50)
    created_at = DateTime()
    processed_at = DateTime()

    @property
    def is_closed(self) -> bool:
        return TransactionStatus(self.status) in _CLOSED_TRANSACTION_STATUSES

    def _assert_open(self) -> None:
        if self.is_closed:
            raise ValidationError({"transaction": [f"Transaction {self.id} is already {self.status}"]})

    def record_gateway_details(self, gateway_transaction_id, gateway_response, raw_response) -> None:
        self._assert_open()
        self.gateway_transaction_id = gateway_transaction_id
        self.gateway_response = gateway_response
        self.gateway_raw_response = raw_response

    def complete(self, processed_at: datetime) -> None:
        self._assert_open()
        self.status = TransactionStatus.COMPLETED.value
        self.processed_at = processed_at

    def fail(self, reason: str, code: str | None, processed_at: datetime) -> None:
        self._assert_open()
        self.status = TransactionStatus.FAILED.value
        self.failure_reason = reason
        self.failure_code = code
        self.processed_at = processed_at

    def cancel(self, processed_at: datetime) -> None:
        self._assert_open()
        self.status = TransactionStatus.CANCELLED.value
        self.processed_at = processed_at


@payments.entity(part_of="Payment")
class Refund:
    """A full or partial refund against the owning payment."""

    reference = String(max_length=50, required=True)
    status = String(max_length=20, choices=RefundStatus, default=RefundStatus.PENDING.value)
    amount = Float(required=True)
    currency = String(max_length=3, default="USD")
    reason = String(max_length=1000)
    requested_by = Identifier(required=True)
    approved_by = Identifier()
    gateway_refund_id = String(max_length=100)
    gateway_response = Text()
    gateway_raw_response = Text()
    failure_reason = String(max_length=500)
    failure_code = String(max_length=50)
    notes = Text()
    metadata = Text()  # JSON object
    created_at = DateTime()
    updated_at = DateTime()
    processed_at = DateTime()
    completed_at = DateTime()
    failed_at = DateTime()

    def _assert_can_transition(self, target: RefundStatus) -> None:
        current = RefundStatus(self.status)
        if target not in _VALID_REFUND_TRANSITIONS[current]:
            raise RefundNotAllowed(f"Cannot transition refund from {current.value} to {target.value}")


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@payments.aggregate
class Payment:
    reference = String(max_length=50, required=True, unique=True)
    order_id = Identifier(required=True, unique=True)
    user_id = Identifier(required=True)
    payment_method = String(max_length=20, choices=PaymentMethod, required=True)
    gateway = String(max_length=20, choices=GatewayName, default=GatewayName.MOCK.value)
    status = String(max_length=20, choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    amount = Float(required=True, min_value=0.01)
    currency = String(min_length=3, max_length=3, default="USD")
    description = String(max_length=500)

    # Descriptive payment-instrument details
    card_last_four = String(max_length=4)
    card_brand = String(max_length=20)
    card_type = String(max_length=20)
    digital_wallet_provider = String(max_length=50)
    bank_name = String(max_length=100)
    external_transaction_id = String(max_length=100)

    # Gateway correlation and accounting
    gateway_payment_id = String(max_length=100)
    gateway_response = Text()
    gateway_raw_response = Text()
    gateway_fee = Float(default=0.0)
    net_amount = Float()
    total_refunded = Float(default=0.0)

    failure_reason = String(max_length=1000)
    failure_code = String(max_length=50)
    retry_count = Integer(default=0)
    last_retry_at = DateTime()

    created_at = DateTime()
    updated_at = DateTime()
    authorized_at = DateTime()
    captured_at = DateTime()
    failed_at = DateTime()
    cancelled_at = DateTime()
    expires_at = DateTime()

    metadata = Text()  # JSON object
    notes = Text()

    transactions = HasMany(PaymentTransaction)
    refunds = HasMany(Refund)

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @invariant.post
    def completed_refunds_cannot_exceed_amount(self):
        if self.amount is None:
            return
        if self._completed_refund_total() > to_money(self.amount):
            raise ValidationError({"refunds": ["Completed refunds cannot exceed the payment amount"]})

    @invariant.post
    def net_amount_is_amount_less_fee(self):
        if self.net_amount is None or self.amount is None:
            return
        if to_money(self.net_amount) != to_money(self.amount) - to_money(self.gateway_fee):
            raise ValidationError({"net_amount": ["Net amount must equal amount less the gateway fee"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_id: str,
        user_id: str,
        payment_method: str,
        amount: float,
        currency: str = "USD",
        gateway: str = GatewayName.MOCK.value,
        description: str | None = None,
        card_last_four: str | None = None,
        card_brand: str | None = None,
        card_type: str | None = None,
        digital_wallet_provider: str | None = None,
        bank_name: str | None = None,
        external_transaction_id: str | None = None,
        notes: str | None = None,
        metadata: dict | None = None,
        reference: str | None = None,
        expiry_minutes: int = DEFAULT_EXPIRY_MINUTES,
    ):
        """Create a new payment in PENDING status.

        Non-cash payments expire ``expiry_minutes`` after creation unless
        they have been settled by then.
        """
        now = datetime.now(UTC)
        expires_at = None
        if payment_method != PaymentMethod.CASH.value:
            expires_at = now + timedelta(minutes=expiry_minutes)

        payment = cls(
            reference=reference or generate_payment_reference(now),
            order_id=order_id,
            user_id=user_id,
            payment_method=payment_method,
            gateway=gateway or GatewayName.MOCK.value,
            status=PaymentStatus.PENDING.value,
            amount=as_float(to_money(amount)),
            currency=(currency or "USD").upper(),
            description=description,
            card_last_four=card_last_four,
            card_brand=card_brand,
            card_type=card_type,
            digital_wallet_provider=digital_wallet_provider,
            bank_name=bank_name,
            external_transaction_id=external_transaction_id,
            notes=notes,
            metadata=_dump_metadata(metadata),
            gateway_fee=0.0,
            total_refunded=0.0,
            retry_count=0,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )

        payment.raise_(
            PaymentCreated(
                payment_id=str(payment.id),
                reference=payment.reference,
                order_id=str(order_id),
                user_id=str(user_id),
                payment_method=payment.payment_method,
                gateway=payment.gateway,
                amount=payment.amount,
                currency=payment.currency,
                expires_at=expires_at,
                created_at=now,
            )
        )
        return payment

    # -------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------
    def _completed_refund_total(self):
        return money_sum(r.amount for r in (self.refunds or []) if r.status == RefundStatus.COMPLETED.value)

    def total_refunded_amount(self) -> float:
        return as_float(self._completed_refund_total())

    def refundable_amount(self) -> float:
        if PaymentStatus(self.status) != PaymentStatus.COMPLETED:
            return 0.0
        return as_float(to_money(self.amount) - self._completed_refund_total())

    def can_be_refunded(self) -> bool:
        return PaymentStatus(self.status) == PaymentStatus.COMPLETED and self.refundable_amount() > 0

    def can_be_retried(self) -> bool:
        return PaymentStatus(self.status) == PaymentStatus.FAILED and (self.retry_count or 0) < MAX_RETRY_ATTEMPTS

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return now > expires_at

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata) if self.metadata else {}

    def get_refund(self, refund_id: str) -> Refund:
        refund = next((r for r in (self.refunds or []) if str(r.id) == str(refund_id)), None)
        if refund is None:
            raise ObjectNotFoundError({"refund_id": [f"Refund {refund_id} not found on payment {self.id}"]})
        return refund

    def get_transaction(self, transaction_id: str) -> PaymentTransaction:
        transaction = next((t for t in (self.transactions or []) if str(t.id) == str(transaction_id)), None)
        if transaction is None:
            raise ObjectNotFoundError({"transaction_id": [f"Transaction {transaction_id} not found"]})
        return transaction

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def can_transition_to(self, target_status: PaymentStatus) -> bool:
        return target_status in _VALID_TRANSITIONS[PaymentStatus(self.status)]

    def _assert_can_transition(self, target_status: PaymentStatus) -> None:
        if not self.can_transition_to(target_status):
            current = PaymentStatus(self.status)
            raise InvalidStatusTransition(f"Cannot transition from {current.value} to {target_status.value}")

    def _enter(self, target_status: PaymentStatus, now: datetime, reason: str | None = None, code: str | None = None):
        """Move to ``target_status`` and apply the status-specific side effects."""
        self._assert_can_transition(target_status)
        self.status = target_status.value
        self.updated_at = now

        match target_status:
            case PaymentStatus.COMPLETED:
                self.captured_at = now
                if self.authorized_at is None:
                    self.authorized_at = now
                self.net_amount = net_of_fee(self.amount, self.gateway_fee or 0.0)
            case PaymentStatus.FAILED:
                self.failed_at = now
                self.failure_reason = reason
                self.failure_code = code
            case PaymentStatus.CANCELLED:
                self.cancelled_at = now
                self.failure_reason = reason
            case PaymentStatus.PROCESSING | PaymentStatus.REFUNDED | PaymentStatus.PENDING:
                pass

    # -------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------
    def start_processing(self) -> None:
        """Claim a PENDING payment for settlement."""
        now = datetime.now(UTC)
        self._enter(PaymentStatus.PROCESSING, now)

    def open_transaction(
        self,
        transaction_type: TransactionType,
        amount: float | None = None,
        refund_id: str | None = None,
    ) -> PaymentTransaction:
        """Append a new PENDING gateway interaction to the transaction log."""
        transaction = PaymentTransaction(
            transaction_type=transaction_type.value,
            status=TransactionStatus.PENDING.value,
            amount=self.amount if amount is None else amount,
            currency=self.currency,
            refund_id=refund_id,
            created_at=datetime.now(UTC),
        )
        self.add_transactions(transaction)
        return transaction

    def apply_settlement(self, transaction: PaymentTransaction, result) -> None:
        """Record the gateway outcome of a SALE on the payment and its transaction."""
        if PaymentStatus(self.status) != PaymentStatus.PROCESSING:
            raise InvalidStatusTransition(f"Cannot settle a payment in status {self.status}")

        now = datetime.now(UTC)
        with atomic_change(self):
            self.gateway_payment_id = result.gateway_transaction_id
            self.gateway_response = result.gateway_response
            self.gateway_raw_response = result.raw_response
            transaction.record_gateway_details(
                result.gateway_transaction_id,
                result.gateway_response,
                result.raw_response,
            )

            if result.succeeded:
                self.gateway_fee = result.gateway_fee
                self._enter(PaymentStatus.COMPLETED, now)
                transaction.complete(now)
            elif result.pending:
                # Back to PENDING until the gateway confirms; outside the admin table
                self.status = PaymentStatus.PENDING.value
                self.updated_at = now
            else:
                self._enter(PaymentStatus.FAILED, now, reason=result.failure_reason, code=result.failure_code)
                transaction.fail(result.failure_reason, result.failure_code, now)

        self._raise_transaction_recorded(transaction)
        self._raise_settled(now)

    def fail_settlement(self, message: str) -> bool:
        """Force a payment whose settlement blew up into FAILED.

        Returns False when the payment is no longer in a state a settlement
        unit could have left it in.
        """
        if PaymentStatus(self.status) not in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
            return False

        now = datetime.now(UTC)
        reason = f"Payment processing error: {message}"
        with atomic_change(self):
            if PaymentStatus(self.status) == PaymentStatus.PENDING:
                self._enter(PaymentStatus.PROCESSING, now)
            self._enter(PaymentStatus.FAILED, now, reason=reason, code="PROCESSING_ERROR")
            open_transactions = [t for t in (self.transactions or []) if not t.is_closed]
            for transaction in open_transactions:
                transaction.fail(reason, "PROCESSING_ERROR", now)

        for transaction in open_transactions:
            self._raise_transaction_recorded(transaction)
        self._raise_settled(now)
        return True

    # -------------------------------------------------------------------
    # Cancellation, retry and administrative updates
    # -------------------------------------------------------------------
    def ensure_cancellable(self) -> None:
        current = PaymentStatus(self.status)
        if current == PaymentStatus.COMPLETED:
            raise InvalidStatusTransition("Cannot cancel completed payment. Use refund instead.")
        if current == PaymentStatus.CANCELLED:
            raise InvalidStatusTransition("Payment is already cancelled")
        self._assert_can_transition(PaymentStatus.CANCELLED)

    def record_void(self, result) -> PaymentTransaction:
        """Log a gateway void attempt made while cancelling."""
        now = datetime.now(UTC)
        transaction = self.open_transaction(TransactionType.VOID)
        transaction.record_gateway_details(
            result.gateway_transaction_id,
            result.gateway_response,
            result.raw_response,
        )
        if result.succeeded:
            transaction.complete(now)
        elif not result.pending:
            transaction.fail(result.failure_reason, result.failure_code, now)
        self.gateway_response = result.gateway_response
        self.gateway_raw_response = result.raw_response
        self._raise_transaction_recorded(transaction)
        return transaction

    def cancel(self, reason: str | None = None) -> None:
        self.ensure_cancellable()
        now = datetime.now(UTC)
        with atomic_change(self):
            self._enter(PaymentStatus.CANCELLED, now, reason=reason)
            closed = self._close_pending_sale(PaymentStatus.CANCELLED, reason, now)
        if closed is not None:
            self._raise_transaction_recorded(closed)
        self.raise_(
            PaymentCancelled(
                payment_id=str(self.id),
                reference=self.reference,
                order_id=str(self.order_id),
                amount=self.amount,
                reason=reason,
                gateway_response=self.gateway_response,
                cancelled_at=now,
            )
        )

    def retry(self) -> None:
        """Send a FAILED payment back for another settlement attempt."""
        if not self.can_be_retried():
            if PaymentStatus(self.status) != PaymentStatus.FAILED:
                raise RetryNotAllowed(f"Only failed payments can be retried (status is {self.status})")
            raise RetryNotAllowed(f"Maximum retry attempts ({MAX_RETRY_ATTEMPTS}) exceeded")

        now = datetime.now(UTC)
        with atomic_change(self):
            self.retry_count = (self.retry_count or 0) + 1
            self.last_retry_at = now
            self.failure_reason = None
            self.failure_code = None
            self.failed_at = None
            self._enter(PaymentStatus.PROCESSING, now)

        self.raise_(
            PaymentRetried(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                retry_count=self.retry_count,
                retried_at=now,
            )
        )

    def update_status(
        self,
        new_status: str,
        reason: str | None = None,
        notes: str | None = None,
        gateway_response: str | None = None,
    ) -> None:
        """Administrative override, gated by the same transition table.

        Applies the same side effects settlement would: a SALE still waiting
        on the gateway is closed with the new outcome, and a FAILED payment
        sent back to PROCESSING loses its failure details and is settled
        again (see ``PaymentSettlementHandler``).
        """
        try:
            target = PaymentStatus(new_status)
        except ValueError:
            raise ValidationError({"status": [f"Unknown payment status: {new_status}"]}) from None

        previous = PaymentStatus(self.status)
        now = datetime.now(UTC)
        with atomic_change(self):
            if previous == PaymentStatus.FAILED and target == PaymentStatus.PROCESSING:
                self.failure_reason = None
                self.failure_code = None
                self.failed_at = None
            self._enter(target, now, reason=reason)
            if notes is not None:
                self.notes = notes
            if gateway_response is not None:
                self.gateway_response = gateway_response
            closed = self._close_pending_sale(target, reason, now)

        if closed is not None:
            self._raise_transaction_recorded(closed)
        self.raise_(
            PaymentStatusUpdated(
                payment_id=str(self.id),
                reference=self.reference,
                order_id=str(self.order_id),
                amount=self.amount,
                currency=self.currency,
                gateway_fee=self.gateway_fee,
                previous_status=previous.value,
                status=target.value,
                reason=reason,
                notes=notes,
                gateway_response=self.gateway_response,
                updated_at=now,
            )
        )

    def pending_sale(self) -> PaymentTransaction | None:
        """The SALE still waiting on a gateway answer, if any."""
        for transaction in self.transactions or []:
            if transaction.transaction_type == TransactionType.SALE.value and not transaction.is_closed:
                return transaction
        return None

    def _close_pending_sale(self, target: PaymentStatus, reason: str | None, now: datetime):
        transaction = self.pending_sale()
        if transaction is None:
            return None

        match target:
            case PaymentStatus.COMPLETED:
                transaction.complete(now)
            case PaymentStatus.FAILED:
                transaction.fail(reason or "Marked failed by administrator", "MANUAL_OVERRIDE", now)
            case PaymentStatus.CANCELLED:
                transaction.cancel(now)
            case PaymentStatus.PENDING | PaymentStatus.PROCESSING | PaymentStatus.REFUNDED:
                return None
        return transaction

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def request_refund(
        self,
        amount: float,
        reason: str | None,
        requested_by: str,
        notes: str | None = None,
        metadata: dict | None = None,
        reference: str | None = None,
    ) -> Refund:
        if not self.can_be_refunded():
            raise RefundNotAllowed(f"Payment {self.reference} cannot be refunded (status {self.status})")

        requested = to_money(amount)
        if requested <= 0:
            raise ValidationError({"amount": ["Refund amount must be greater than zero"]})
        refundable = to_money(self.refundable_amount())
        if requested > refundable:
            raise AmountExceedsRefundable(
                f"Refund amount ({requested}) exceeds refundable amount ({refundable})"
            )

        now = datetime.now(UTC)
        taken = {r.reference for r in (self.refunds or [])}
        reference = reference or generate_refund_reference(now)
        while reference in taken:
            reference = generate_refund_reference(now)

        refund = Refund(
            reference=reference,
            status=RefundStatus.PENDING.value,
            amount=as_float(requested),
            currency=self.currency,
            reason=reason,
            requested_by=requested_by,
            notes=notes,
            metadata=_dump_metadata(metadata),
            created_at=now,
            updated_at=now,
        )
        self.add_refunds(refund)

        self.raise_(
            RefundRequested(
                payment_id=str(self.id),
                refund_id=str(refund.id),
                reference=refund.reference,
                order_id=str(self.order_id),
                amount=refund.amount,
                currency=refund.currency,
                reason=reason,
                requested_by=str(requested_by),
                notes=notes,
                requested_at=now,
            )
        )
        return refund

    def approve_refund(self, refund_id: str, approved_by: str) -> Refund:
        refund = self.get_refund(refund_id)
        if RefundStatus(refund.status) != RefundStatus.PENDING:
            raise RefundNotAllowed(f"Only pending refunds can be approved (refund is {refund.status})")

        now = datetime.now(UTC)
        refund._assert_can_transition(RefundStatus.PROCESSING)
        refund.status = RefundStatus.PROCESSING.value
        refund.approved_by = approved_by
        refund.processed_at = now
        refund.updated_at = now

        self.raise_(
            RefundApproved(
                payment_id=str(self.id),
                refund_id=str(refund.id),
                approved_by=str(approved_by),
                approved_at=now,
            )
        )
        return refund

    def reject_refund(self, refund_id: str, reason: str | None, rejected_by: str) -> Refund:
        refund = self.get_refund(refund_id)
        if RefundStatus(refund.status) != RefundStatus.PENDING:
            raise RefundNotAllowed(f"Only pending refunds can be rejected (refund is {refund.status})")

        now = datetime.now(UTC)
        refund._assert_can_transition(RefundStatus.FAILED)
        refund.status = RefundStatus.FAILED.value
        refund.failure_reason = reason
        refund.approved_by = rejected_by
        refund.failed_at = now
        refund.updated_at = now

        self.raise_(
            RefundRejected(
                payment_id=str(self.id),
                refund_id=str(refund.id),
                reason=reason,
                rejected_by=str(rejected_by),
                rejected_at=now,
            )
        )
        return refund

    def start_refund_processing(self, refund_id: str) -> Refund:
        refund = self.get_refund(refund_id)
        refund._assert_can_transition(RefundStatus.PROCESSING)
        now = datetime.now(UTC)
        refund.status = RefundStatus.PROCESSING.value
        refund.processed_at = refund.processed_at or now
        refund.updated_at = now
        return refund

    def refund_fits_balance(self, refund_id: str) -> bool:
        """Would completing this refund keep completed refunds within the amount?"""
        refund = self.get_refund(refund_id)
        return to_money(refund.amount) <= to_money(self.refundable_amount())

    def apply_refund_settlement(self, refund_id: str, result) -> Refund:
        """Record the gateway outcome of a refund and re-derive the refunded total."""
        refund = self.get_refund(refund_id)
        if RefundStatus(refund.status) != RefundStatus.PROCESSING:
            raise RefundNotAllowed(f"Cannot settle a refund in status {refund.status}")

        now = datetime.now(UTC)
        with atomic_change(self):
            transaction = self.open_transaction(TransactionType.REFUND, amount=refund.amount, refund_id=str(refund.id))
            transaction.record_gateway_details(
                result.gateway_transaction_id,
                result.gateway_response,
                result.raw_response,
            )
            refund.gateway_refund_id = result.gateway_transaction_id
            refund.gateway_response = result.gateway_response
            refund.gateway_raw_response = result.raw_response
            refund.updated_at = now

            if result.succeeded:
                refund._assert_can_transition(RefundStatus.COMPLETED)
                refund.status = RefundStatus.COMPLETED.value
                refund.completed_at = now
                transaction.complete(now)
            elif not result.pending:
                self._fail_refund(refund, result.failure_reason, result.failure_code, now)
                transaction.fail(result.failure_reason, result.failure_code, now)
            # Pending refunds stay PROCESSING until the gateway confirms

            self._recompute_refunded(now)

        self._raise_transaction_recorded(transaction)
        self._raise_refund_settled(refund, now)
        return refund

    def fail_refund(self, refund_id: str, reason: str, code: str | None = None) -> bool:
        """Terminate a refund as FAILED outside the gateway path."""
        refund = self.get_refund(refund_id)
        if RefundStatus(refund.status) not in (RefundStatus.PENDING, RefundStatus.PROCESSING):
            return False

        now = datetime.now(UTC)
        with atomic_change(self):
            self._fail_refund(refund, reason, code, now)
            self._recompute_refunded(now)
        self._raise_refund_settled(refund, now)
        return True

    def _fail_refund(self, refund: Refund, reason: str, code: str | None, now: datetime) -> None:
        refund._assert_can_transition(RefundStatus.FAILED)
        refund.status = RefundStatus.FAILED.value
        refund.failure_reason = reason
        refund.failure_code = code
        refund.failed_at = now
        refund.updated_at = now

    def _recompute_refunded(self, now: datetime) -> None:
        """Derive the refunded total from COMPLETED refunds; idempotent."""
        completed = self._completed_refund_total()
        self.total_refunded = as_float(completed)
        self.updated_at = now

        if PaymentStatus(self.status) == PaymentStatus.COMPLETED and completed >= to_money(self.amount):
            self._enter(PaymentStatus.REFUNDED, now)
            self.raise_(
                PaymentRefunded(
                    payment_id=str(self.id),
                    reference=self.reference,
                    order_id=str(self.order_id),
                    amount=self.amount,
                    total_refunded=self.total_refunded,
                    refunded_at=now,
                )
            )

    # -------------------------------------------------------------------
    # Event helpers
    # -------------------------------------------------------------------
    def _raise_transaction_recorded(self, transaction: PaymentTransaction) -> None:
        self.raise_(
            TransactionRecorded(
                payment_id=str(self.id),
                transaction_id=str(transaction.id),
                refund_id=str(transaction.refund_id) if transaction.refund_id else None,
                transaction_type=transaction.transaction_type,
                status=transaction.status,
                amount=transaction.amount,
                currency=transaction.currency,
                gateway_transaction_id=transaction.gateway_transaction_id,
                gateway_response=transaction.gateway_response,
                failure_reason=transaction.failure_reason,
                failure_code=transaction.failure_code,
                created_at=transaction.created_at,
                processed_at=transaction.processed_at,
            )
        )

    def _raise_settled(self, now: datetime) -> None:
        self.raise_(
            PaymentSettled(
                payment_id=str(self.id),
                reference=self.reference,
                order_id=str(self.order_id),
                user_id=str(self.user_id),
                status=self.status,
                payment_method=self.payment_method,
                gateway=self.gateway,
                amount=self.amount,
                currency=self.currency,
                gateway_fee=self.gateway_fee,
                net_amount=self.net_amount,
                gateway_transaction_id=self.gateway_payment_id,
                gateway_response=self.gateway_response,
                failure_reason=self.failure_reason,
                failure_code=self.failure_code,
                settled_at=now,
            )
        )

    def _raise_refund_settled(self, refund: Refund, now: datetime) -> None:
        self.raise_(
            RefundSettled(
                payment_id=str(self.id),
                refund_id=str(refund.id),
                order_id=str(self.order_id),
                status=refund.status,
                amount=refund.amount,
                currency=refund.currency,
                gateway_refund_id=refund.gateway_refund_id,
                gateway_response=refund.gateway_response,
                failure_reason=refund.failure_reason,
                failure_code=refund.failure_code,
                settled_at=now,
            )
        )
