"""Tests for the payment state machine and the administrative status override."""

import pytest
from payments.errors import InvalidStatusTransition
from payments.gateway.port import GatewayOutcome, GatewayResult
from payments.payment.events import PaymentStatusUpdated, TransactionRecorded
from payments.payment.payment import Payment, PaymentStatus, TransactionStatus, TransactionType
from protean import atomic_change
from protean.exceptions import ValidationError

ALLOWED = {
    ("PENDING", "PROCESSING"),
    ("PENDING", "CANCELLED"),
    ("PENDING", "COMPLETED"),
    ("PROCESSING", "COMPLETED"),
    ("PROCESSING", "FAILED"),
    ("PROCESSING", "CANCELLED"),
    ("COMPLETED", "REFUNDED"),
    ("FAILED", "PROCESSING"),
}

ALL_PAIRS = [(src.value, dst.value) for src in PaymentStatus for dst in PaymentStatus]


def _payment_in(status: str) -> Payment:
    payment = Payment.create(order_id="ord-001", user_id="user-001", payment_method="CARD", amount=100.00)
    with atomic_change(payment):
        payment.status = status
    payment._events.clear()
    return payment


class TestTransitionTable:
    @pytest.mark.parametrize("source,target", ALL_PAIRS)
    def test_can_transition_to(self, source, target):
        payment = _payment_in(source)
        assert payment.can_transition_to(PaymentStatus(target)) is ((source, target) in ALLOWED)

    @pytest.mark.parametrize("status", ["CANCELLED", "REFUNDED"])
    def test_terminal_statuses_have_no_exits(self, status):
        payment = _payment_in(status)
        assert not any(payment.can_transition_to(target) for target in PaymentStatus)


class TestUpdateStatus:
    @pytest.mark.parametrize("source,target", ALL_PAIRS)
    def test_update_status_follows_table(self, source, target):
        payment = _payment_in(source)

        if (source, target) in ALLOWED:
            payment.update_status(target, reason="admin override")
            assert payment.status == target
        else:
            with pytest.raises(InvalidStatusTransition):
                payment.update_status(target)
            assert payment.status == source

    def test_failed_back_to_processing_clears_failure(self):
        payment = _payment_in("FAILED")
        with atomic_change(payment):
            payment.failure_reason = "Card declined"
            payment.failure_code = "DECLINED"
        payment.update_status("PROCESSING", reason="customer called the bank")

        assert payment.status == PaymentStatus.PROCESSING.value
        assert payment.failure_reason is None
        assert payment.failure_code is None
        assert payment.failed_at is None
        assert payment.retry_count == 0

    def test_rejection_message_names_both_statuses(self):
        payment = _payment_in("CANCELLED")
        with pytest.raises(InvalidStatusTransition) as exc:
            payment.update_status("COMPLETED")
        assert str(exc.value) == "Cannot transition from CANCELLED to COMPLETED"
        assert exc.value.code == "INVALID_STATUS_TRANSITION"

    def test_unknown_status_is_a_validation_error(self):
        payment = _payment_in("PENDING")
        with pytest.raises(ValidationError):
            payment.update_status("SETTLED")

    def test_update_status_raises_event(self):
        payment = _payment_in("PENDING")
        payment.update_status("PROCESSING", reason="picked up", notes="manual")
        event = payment._events[-1]
        assert isinstance(event, PaymentStatusUpdated)
        assert event.previous_status == "PENDING"
        assert event.status == "PROCESSING"
        assert event.reason == "picked up"

    def test_update_status_keeps_notes_and_gateway_response(self):
        payment = _payment_in("PENDING")
        payment.update_status("PROCESSING", notes="called the bank", gateway_response="held")
        assert payment.notes == "called the bank"
        assert payment.gateway_response == "held"


class TestStatusSideEffects:
    def test_completed_sets_capture_and_net(self):
        payment = _payment_in("PROCESSING")
        payment.update_status("COMPLETED")
        assert payment.captured_at is not None
        assert payment.authorized_at is not None
        assert payment.net_amount == 100.00

    def test_failed_sets_failure_fields(self):
        payment = _payment_in("PROCESSING")
        payment.update_status("FAILED", reason="Bank rejected")
        assert payment.failed_at is not None
        assert payment.failure_reason == "Bank rejected"

    def test_cancelled_sets_cancelled_at(self):
        payment = _payment_in("PENDING")
        payment.update_status("CANCELLED", reason="Customer changed mind")
        assert payment.cancelled_at is not None
        assert payment.failure_reason == "Customer changed mind"

    def test_updated_at_moves_forward(self):
        payment = _payment_in("PENDING")
        before = payment.updated_at
        payment.update_status("PROCESSING")
        assert payment.updated_at >= before


def _awaiting_confirmation() -> Payment:
    """A MANUAL payment the gateway answered with 'pending'."""
    payment = Payment.create(
        order_id="ord-001",
        user_id="user-001",
        payment_method="BANK_TRANSFER",
        amount=60.00,
        gateway="MANUAL",
    )
    payment.start_processing()
    payment.apply_settlement(
        payment.open_transaction(TransactionType.SALE),
        GatewayResult(
            outcome=GatewayOutcome.PENDING,
            gateway_transaction_id="GW-1700000000000-77777",
            gateway_response="Manual payment requires confirmation",
            raw_response="{}",
        ),
    )
    payment._events.clear()
    return payment


class TestPendingSaleIsClosed:
    def test_pending_sale_is_found(self):
        payment = _awaiting_confirmation()
        assert payment.pending_sale().id == payment.transactions[0].id

    def test_confirmed_payment_completes_its_sale(self):
        payment = _awaiting_confirmation()
        payment.update_status("COMPLETED", reason="Transfer received")

        sale = payment.transactions[0]
        assert sale.status == TransactionStatus.COMPLETED.value
        assert sale.processed_at is not None
        assert payment.pending_sale() is None

    def test_failed_payment_fails_its_sale(self):
        payment = _awaiting_confirmation()
        payment.update_status("PROCESSING")
        payment.update_status("FAILED", reason="Transfer bounced")

        sale = payment.transactions[0]
        assert sale.status == TransactionStatus.FAILED.value
        assert sale.failure_reason == "Transfer bounced"
        assert sale.failure_code == "MANUAL_OVERRIDE"

    def test_cancelled_payment_cancels_its_sale(self):
        payment = _awaiting_confirmation()
        payment.cancel("Paid in cash instead")
        assert payment.transactions[0].status == TransactionStatus.CANCELLED.value

    def test_processing_leaves_the_sale_waiting(self):
        payment = _awaiting_confirmation()
        payment.update_status("PROCESSING")
        assert payment.pending_sale().id == payment.transactions[0].id

    def test_closed_sale_is_recorded(self):
        payment = _awaiting_confirmation()
        payment.update_status("COMPLETED")
        recorded = [e for e in payment._events if isinstance(e, TransactionRecorded)]
        assert len(recorded) == 1
        assert recorded[0].status == TransactionStatus.COMPLETED.value

    def test_update_event_carries_fee_and_currency(self):
        payment = _awaiting_confirmation()
        payment.update_status("COMPLETED")
        event = payment._events[-1]
        assert isinstance(event, PaymentStatusUpdated)
        assert event.currency == "USD"
        assert event.gateway_fee == 0.0
