"""Tests for retrying and cancelling payments."""

import pytest
from payments.errors import InvalidStatusTransition, RetryNotAllowed
from payments.gateway.port import GatewayOutcome, GatewayResult
from payments.payment.events import PaymentCancelled, PaymentRetried, TransactionRecorded
from payments.payment.payment import (
    MAX_RETRY_ATTEMPTS,
    Payment,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
)


def _result(outcome, **kwargs):
    defaults = {
        "outcome": outcome,
        "gateway_transaction_id": "GW-1700000000000-10101",
        "gateway_response": "Transaction approved" if outcome is GatewayOutcome.SUCCESS else "Card declined",
        "raw_response": "{}",
    }
    if outcome is GatewayOutcome.FAILURE:
        defaults.update(failure_reason="Card declined", failure_code="DECLINED")
    defaults.update(kwargs)
    return GatewayResult(**defaults)


def _make_payment():
    payment = Payment.create(order_id="ord-001", user_id="user-001", payment_method="CARD", amount=25.00)
    payment._events.clear()
    return payment


def _failed_payment():
    payment = _make_payment()
    payment.start_processing()
    payment.apply_settlement(payment.open_transaction(TransactionType.SALE), _result(GatewayOutcome.FAILURE))
    payment._events.clear()
    return payment


class TestRetry:
    def test_retry_moves_failed_to_processing(self):
        payment = _failed_payment()
        payment.retry()
        assert payment.status == PaymentStatus.PROCESSING.value
        assert payment.retry_count == 1
        assert payment.last_retry_at is not None

    def test_retry_clears_failure(self):
        payment = _failed_payment()
        payment.retry()
        assert payment.failure_reason is None
        assert payment.failure_code is None
        assert payment.failed_at is None

    def test_retry_raises_payment_retried(self):
        payment = _failed_payment()
        payment.retry()
        event = payment._events[-1]
        assert isinstance(event, PaymentRetried)
        assert event.retry_count == 1

    def test_retry_keeps_earlier_transactions(self):
        payment = _failed_payment()
        payment.retry()
        assert len(payment.transactions) == 1
        assert payment.transactions[0].status == TransactionStatus.FAILED.value

    def test_only_failed_payments_can_be_retried(self):
        payment = _make_payment()
        with pytest.raises(RetryNotAllowed) as exc:
            payment.retry()
        assert str(exc.value) == "Only failed payments can be retried (status is PENDING)"

    def test_retries_are_capped(self):
        payment = _failed_payment()
        for _ in range(MAX_RETRY_ATTEMPTS):
            payment.retry()
            payment.apply_settlement(
                payment.open_transaction(TransactionType.SALE), _result(GatewayOutcome.FAILURE)
            )

        assert payment.retry_count == MAX_RETRY_ATTEMPTS
        assert payment.can_be_retried() is False
        with pytest.raises(RetryNotAllowed) as exc:
            payment.retry()
        assert str(exc.value) == "Maximum retry attempts (3) exceeded"
        assert exc.value.code == "RETRY_NOT_ALLOWED"


class TestCancel:
    def test_cancel_pending_payment(self):
        payment = _make_payment()
        payment.cancel("Customer changed mind")
        assert payment.status == PaymentStatus.CANCELLED.value
        assert payment.cancelled_at is not None
        assert payment.failure_reason == "Customer changed mind"

    def test_cancel_raises_payment_cancelled(self):
        payment = _make_payment()
        payment.cancel("Customer changed mind")
        event = payment._events[-1]
        assert isinstance(event, PaymentCancelled)
        assert event.reason == "Customer changed mind"

    def test_cancel_processing_payment(self):
        payment = _make_payment()
        payment.start_processing()
        payment.cancel()
        assert payment.status == PaymentStatus.CANCELLED.value

    def test_completed_payment_points_to_refund(self):
        payment = _make_payment()
        payment.start_processing()
        payment.apply_settlement(payment.open_transaction(TransactionType.SALE), _result(GatewayOutcome.SUCCESS))
        with pytest.raises(InvalidStatusTransition) as exc:
            payment.cancel()
        assert str(exc.value) == "Cannot cancel completed payment. Use refund instead."

    def test_cancelled_payment_cannot_be_cancelled_again(self):
        payment = _make_payment()
        payment.cancel()
        with pytest.raises(InvalidStatusTransition) as exc:
            payment.cancel()
        assert str(exc.value) == "Payment is already cancelled"

    def test_failed_payment_cannot_be_cancelled(self):
        payment = _failed_payment()
        with pytest.raises(InvalidStatusTransition):
            payment.cancel()


class TestRecordVoid:
    def test_successful_void_is_logged(self):
        payment = _make_payment()
        transaction = payment.record_void(_result(GatewayOutcome.SUCCESS))
        assert transaction.transaction_type == TransactionType.VOID.value
        assert transaction.status == TransactionStatus.COMPLETED.value
        assert isinstance(payment._events[-1], TransactionRecorded)

    def test_declined_void_is_logged_as_failed(self):
        payment = _make_payment()
        transaction = payment.record_void(_result(GatewayOutcome.FAILURE))
        assert transaction.status == TransactionStatus.FAILED.value
        assert transaction.failure_code == "DECLINED"

    def test_void_does_not_change_payment_status(self):
        payment = _make_payment()
        payment.record_void(_result(GatewayOutcome.SUCCESS))
        assert payment.status == PaymentStatus.PENDING.value
