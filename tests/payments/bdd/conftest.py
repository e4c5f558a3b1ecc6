"""Shared BDD fixtures and step definitions for the Payments domain."""

import pytest
from payments.errors import PaymentRuleViolation
from payments.gateway.port import GatewayOutcome, GatewayResult
from payments.payment.events import (
    PaymentCancelled,
    PaymentCreated,
    PaymentRefunded,
    PaymentRetried,
    PaymentSettled,
    RefundApproved,
    RefundRejected,
    RefundRequested,
    RefundSettled,
    TransactionRecorded,
)
from payments.payment.payment import Payment, TransactionType
from pytest_bdd import given, parsers, then, when

# Map event name strings to classes for dynamic lookup
_PAYMENT_EVENT_CLASSES = {
    "PaymentCreated": PaymentCreated,
    "PaymentSettled": PaymentSettled,
    "PaymentRetried": PaymentRetried,
    "PaymentCancelled": PaymentCancelled,
    "PaymentRefunded": PaymentRefunded,
    "TransactionRecorded": TransactionRecorded,
    "RefundRequested": RefundRequested,
    "RefundApproved": RefundApproved,
    "RefundRejected": RefundRejected,
    "RefundSettled": RefundSettled,
}


def gateway_result(outcome: str, fee: float = 0.0) -> GatewayResult:
    """Build a gateway answer from a feature-file word: approves, declines or defers."""
    if outcome == "approves":
        return GatewayResult(
            outcome=GatewayOutcome.SUCCESS,
            gateway_transaction_id="GW-1700000000000-42424",
            gateway_response="Transaction approved",
            raw_response="{}",
            gateway_fee=fee,
        )
    if outcome == "declines":
        return GatewayResult(
            outcome=GatewayOutcome.FAILURE,
            gateway_transaction_id="GW-1700000000000-13131",
            gateway_response="Insufficient funds",
            raw_response="{}",
            failure_reason="Insufficient funds",
            failure_code="DECLINED",
        )
    return GatewayResult(
        outcome=GatewayOutcome.PENDING,
        gateway_transaction_id="GW-1700000000000-77777",
        gateway_response="Manual payment requires confirmation",
        raw_response="{}",
    )


@pytest.fixture()
def outcome():
    """Holds the rule violation raised by the last When step, if any."""
    return {}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('a pending {method} payment of {amount:f} through "{gateway}"'), target_fixture="payment")
def _pending_payment(method, amount, gateway):
    payment = Payment.create(
        order_id="ord-bdd-001",
        user_id="user-bdd-001",
        payment_method=method,
        amount=amount,
        gateway=gateway,
    )
    payment._events.clear()
    return payment


@given(parsers.cfparse("a completed payment of {amount:f}"), target_fixture="payment")
def _completed_payment(amount):
    payment = Payment.create(
        order_id="ord-bdd-001",
        user_id="user-bdd-001",
        payment_method="DIGITAL_WALLET",
        amount=amount,
        gateway="PAYPAL",
    )
    payment.start_processing()
    payment.apply_settlement(payment.open_transaction(TransactionType.SALE), gateway_result("approves"))
    payment._events.clear()
    return payment


@given(parsers.cfparse("the gateway has declined it {count:d} times"), target_fixture="payment")
def _declined_times(payment, count):
    payment.start_processing()
    payment.apply_settlement(payment.open_transaction(TransactionType.SALE), gateway_result("declines"))
    for _ in range(count - 1):
        payment.retry()
        payment.apply_settlement(payment.open_transaction(TransactionType.SALE), gateway_result("declines"))
    payment._events.clear()
    return payment


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse("the gateway {answer} the sale with a fee of {fee:f}"), target_fixture="payment")
def _gateway_answers_with_fee(payment, answer, fee):
    payment.start_processing()
    payment.apply_settlement(payment.open_transaction(TransactionType.SALE), gateway_result(answer, fee))
    return payment


@when(parsers.cfparse("the gateway {answer} the sale"), target_fixture="payment")
def _gateway_answers(payment, answer):
    payment.start_processing()
    payment.apply_settlement(payment.open_transaction(TransactionType.SALE), gateway_result(answer))
    return payment


@when("the payment is retried", target_fixture="payment")
def _retry(payment, outcome):
    try:
        payment.retry()
    except PaymentRuleViolation as exc:
        outcome["error"] = exc
    return payment


@when(parsers.cfparse('the payment is cancelled because "{reason}"'), target_fixture="payment")
def _cancel(payment, outcome, reason):
    try:
        payment.cancel(reason)
    except PaymentRuleViolation as exc:
        outcome["error"] = exc
    return payment


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the payment status is "{status}"'))
def _payment_status(payment, status):
    assert payment.status == status


@then(parsers.cfparse("the net amount is {amount:f}"))
def _net_amount(payment, amount):
    assert payment.net_amount == amount


@then(parsers.cfparse("the refundable amount is {amount:f}"))
def _refundable(payment, amount):
    assert payment.refundable_amount() == amount


@then(parsers.cfparse("the retry count is {count:d}"))
def _retry_count(payment, count):
    assert payment.retry_count == count


@then(parsers.cfparse('the request is refused with "{code}"'))
def _refused(outcome, code):
    assert "error" in outcome, "Expected the step to be refused"
    assert outcome["error"].code == code


@then(parsers.cfparse("a {event_type} payment event is raised"))
def _payment_event_raised(payment, event_type):
    event_cls = _PAYMENT_EVENT_CLASSES[event_type]
    assert any(
        isinstance(e, event_cls) for e in payment._events
    ), f"No {event_type} event found. Events: {[type(e).__name__ for e in payment._events]}"


# ---------------------------------------------------------------------------
# Refund steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse("a refund of {amount:f} has been settled"), target_fixture="payment")
def _settled_refund(payment, amount):
    refund = payment.request_refund(amount, "Earlier complaint", "user-bdd-001")
    payment.start_refund_processing(str(refund.id))
    payment.apply_refund_settlement(str(refund.id), gateway_result("approves"))
    payment._events.clear()
    return payment


@when(parsers.cfparse('a refund of {amount:f} is requested because "{reason}"'), target_fixture="refund")
def _request_refund(payment, outcome, amount, reason):
    try:
        return payment.request_refund(amount, reason, "user-bdd-001")
    except PaymentRuleViolation as exc:
        outcome["error"] = exc
        return None


@when(parsers.cfparse("the gateway {answer} the refund"), target_fixture="refund")
def _gateway_answers_refund(payment, refund, answer):
    payment.start_refund_processing(str(refund.id))
    return payment.apply_refund_settlement(str(refund.id), gateway_result(answer))


@then(parsers.cfparse('the refund status is "{status}"'))
def _refund_status(payment, refund, status):
    assert payment.get_refund(str(refund.id)).status == status
