"""Tests for applying gateway outcomes to a payment and its transaction log."""

import pytest
from payments.errors import InvalidStatusTransition
from payments.gateway.port import GatewayOutcome, GatewayResult
from payments.payment.events import PaymentSettled, TransactionRecorded
from payments.payment.payment import (
    Payment,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
)
from protean.exceptions import ValidationError


def _make_payment(**overrides):
    defaults = {
        "order_id": "ord-001",
        "user_id": "user-001",
        "payment_method": "CARD",
        "amount": 100.00,
        "gateway": "STRIPE",
    }
    defaults.update(overrides)
    payment = Payment.create(**defaults)
    payment._events.clear()
    return payment


def _approved(fee=3.20):
    return GatewayResult(
        outcome=GatewayOutcome.SUCCESS,
        gateway_transaction_id="GW-1700000000000-12345",
        gateway_response="Transaction approved",
        raw_response='{"status": "success"}',
        gateway_fee=fee,
    )


def _declined():
    return GatewayResult(
        outcome=GatewayOutcome.FAILURE,
        gateway_transaction_id="GW-1700000000000-54321",
        gateway_response="Card declined",
        raw_response='{"status": "failed"}',
        failure_reason="Card declined",
        failure_code="DECLINED",
    )


def _pending():
    return GatewayResult(
        outcome=GatewayOutcome.PENDING,
        gateway_transaction_id="GW-1700000000000-99999",
        gateway_response="Manual payment requires confirmation",
        raw_response='{"status": "pending"}',
    )


def _settle(payment, result):
    payment.start_processing()
    transaction = payment.open_transaction(TransactionType.SALE)
    payment.apply_settlement(transaction, result)
    return transaction


class TestStartProcessing:
    def test_pending_payment_moves_to_processing(self):
        payment = _make_payment()
        payment.start_processing()
        assert payment.status == PaymentStatus.PROCESSING.value

    def test_completed_payment_cannot_restart(self):
        payment = _make_payment()
        _settle(payment, _approved())
        with pytest.raises(InvalidStatusTransition):
            payment.start_processing()


class TestOpenTransaction:
    def test_transaction_defaults_to_payment_amount(self):
        payment = _make_payment()
        transaction = payment.open_transaction(TransactionType.SALE)
        assert transaction.amount == 100.00
        assert transaction.currency == "USD"
        assert transaction.status == TransactionStatus.PENDING.value
        assert len(payment.transactions) == 1

    def test_transaction_with_explicit_amount(self):
        payment = _make_payment()
        transaction = payment.open_transaction(TransactionType.REFUND, amount=25.00, refund_id="ref-1")
        assert transaction.amount == 25.00
        assert str(transaction.refund_id) == "ref-1"


class TestSuccessfulSettlement:
    def test_status_completed(self):
        payment = _make_payment()
        _settle(payment, _approved())
        assert payment.status == PaymentStatus.COMPLETED.value

    def test_fee_and_net_amount(self):
        payment = _make_payment()
        _settle(payment, _approved(fee=3.20))
        assert payment.gateway_fee == 3.20
        assert payment.net_amount == 96.80

    def test_capture_timestamps(self):
        payment = _make_payment()
        _settle(payment, _approved())
        assert payment.authorized_at is not None
        assert payment.captured_at is not None

    def test_gateway_details_recorded(self):
        payment = _make_payment()
        _settle(payment, _approved())
        assert payment.gateway_payment_id == "GW-1700000000000-12345"
        assert payment.gateway_response == "Transaction approved"

    def test_sale_transaction_completed(self):
        payment = _make_payment()
        transaction = _settle(payment, _approved())
        assert transaction.transaction_type == TransactionType.SALE.value
        assert transaction.status == TransactionStatus.COMPLETED.value
        assert transaction.processed_at is not None

    def test_raises_transaction_recorded_and_settled(self):
        payment = _make_payment()
        _settle(payment, _approved())
        kinds = [type(e) for e in payment._events]
        assert kinds == [TransactionRecorded, PaymentSettled]
        settled = payment._events[-1]
        assert settled.status == PaymentStatus.COMPLETED.value
        assert settled.net_amount == 96.80

    def test_completed_payment_is_refundable(self):
        payment = _make_payment()
        _settle(payment, _approved())
        assert payment.can_be_refunded() is True
        assert payment.refundable_amount() == 100.00


class TestDeclinedSettlement:
    def test_status_failed_with_reason(self):
        payment = _make_payment()
        _settle(payment, _declined())
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.failure_reason == "Card declined"
        assert payment.failure_code == "DECLINED"
        assert payment.failed_at is not None

    def test_sale_transaction_failed(self):
        payment = _make_payment()
        transaction = _settle(payment, _declined())
        assert transaction.status == TransactionStatus.FAILED.value
        assert transaction.failure_code == "DECLINED"

    def test_no_net_amount(self):
        payment = _make_payment()
        _settle(payment, _declined())
        assert payment.net_amount is None

    def test_failed_payment_can_be_retried(self):
        payment = _make_payment()
        _settle(payment, _declined())
        assert payment.can_be_retried() is True


class TestPendingSettlement:
    def test_pending_outcome_returns_to_pending(self):
        payment = _make_payment(gateway="MANUAL")
        transaction = _settle(payment, _pending())
        assert payment.status == PaymentStatus.PENDING.value
        assert transaction.status == TransactionStatus.PENDING.value

    def test_pending_outcome_still_raises_settled(self):
        payment = _make_payment(gateway="MANUAL")
        _settle(payment, _pending())
        assert isinstance(payment._events[-1], PaymentSettled)
        assert payment._events[-1].status == PaymentStatus.PENDING.value


class TestSettlementGuards:
    def test_cannot_settle_unclaimed_payment(self):
        payment = _make_payment()
        transaction = payment.open_transaction(TransactionType.SALE)
        with pytest.raises(InvalidStatusTransition):
            payment.apply_settlement(transaction, _approved())

    def test_closed_transaction_is_immutable(self):
        payment = _make_payment()
        transaction = _settle(payment, _approved())
        with pytest.raises(ValidationError):
            transaction.fail("late", "LATE", transaction.processed_at)
        with pytest.raises(ValidationError):
            transaction.record_gateway_details("GW-other", "other", None)
        assert transaction.status == TransactionStatus.COMPLETED.value


class TestFailSettlement:
    def test_processing_payment_is_failed(self):
        payment = _make_payment()
        payment.start_processing()
        transaction = payment.open_transaction(TransactionType.SALE)

        assert payment.fail_settlement("gateway exploded") is True
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.failure_reason == "Payment processing error: gateway exploded"
        assert payment.failure_code == "PROCESSING_ERROR"
        assert transaction.status == TransactionStatus.FAILED.value

    def test_pending_payment_is_failed(self):
        payment = _make_payment()
        assert payment.fail_settlement("boom") is True
        assert payment.status == PaymentStatus.FAILED.value

    def test_settled_payment_is_left_alone(self):
        payment = _make_payment()
        _settle(payment, _approved())
        assert payment.fail_settlement("late error") is False
        assert payment.status == PaymentStatus.COMPLETED.value
