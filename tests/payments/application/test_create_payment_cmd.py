"""Application tests for payment creation via domain.process()."""

import json

import pytest
from payments.config import configure_settings
from payments.errors import CollaboratorUnavailable, DuplicatePayment, OrderNotFound
from payments.payment.cancellation import CancelPayment
from payments.payment.creation import CreatePayment, creations
from payments.payment.payment import Payment, PaymentStatus, TransactionStatus, TransactionType
from protean import current_domain
from protean.exceptions import ValidationError


def _create_payment(order_service, register=True, **overrides):
    defaults = {
        "order_id": "ord-001",
        "user_id": "user-001",
        "payment_method": "CARD",
        "gateway": "STRIPE",
        "amount": 100.00,
        "card_last_four": "4242",
    }
    defaults.update(overrides)
    if register:
        order_service.register_order(defaults["order_id"], defaults["amount"], user_id=defaults["user_id"])
    return current_domain.process(CreatePayment(**defaults), asynchronous=False)


def _load(payment_id):
    return current_domain.repository_for(Payment).get(payment_id)


class TestCreatePaymentFlow:
    def test_create_returns_payment_id(self, order_service):
        payment_id = _create_payment(order_service)
        assert payment_id is not None

    def test_create_persists_payment(self, order_service):
        payment_id = _create_payment(order_service)
        payment = _load(payment_id)
        assert str(payment.order_id) == "ord-001"
        assert str(payment.user_id) == "user-001"
        assert payment.card_last_four == "4242"

    def test_create_keeps_metadata(self, order_service):
        payment_id = _create_payment(order_service, metadata=json.dumps({"channel": "kiosk"}))
        assert _load(payment_id).metadata_dict == {"channel": "kiosk"}

    def test_created_payment_is_settled(self, order_service):
        payment_id = _create_payment(order_service)
        payment = _load(payment_id)
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.gateway_payment_id.startswith("GW-")

    def test_settlement_books_card_fee(self, order_service):
        payment_id = _create_payment(order_service)
        payment = _load(payment_id)
        assert payment.gateway_fee == 3.20
        assert payment.net_amount == 96.80

    def test_settlement_logs_sale_transaction(self, order_service):
        payment_id = _create_payment(order_service)
        transactions = _load(payment_id).transactions
        assert len(transactions) == 1
        assert transactions[0].transaction_type == TransactionType.SALE.value
        assert transactions[0].status == TransactionStatus.COMPLETED.value
        assert transactions[0].amount == 100.00

    def test_gateway_sees_the_payment(self, order_service, gateway):
        _create_payment(order_service, payment_method="DIGITAL_WALLET", gateway="PAYPAL", amount=18.75)
        assert gateway.calls[-1]["gateway"] == "PAYPAL"
        assert gateway.calls[-1]["amount"] == 18.75

    def test_non_card_payments_carry_no_fee(self, order_service):
        payment_id = _create_payment(order_service, payment_method="CASH", gateway="MOCK", amount=12.00)
        payment = _load(payment_id)
        assert payment.gateway_fee == 0.0
        assert payment.net_amount == 12.00

    def test_declined_payment_is_failed(self, order_service, gateway):
        gateway.configure(payment_success_rate=0.0)
        payment_id = _create_payment(order_service)
        payment = _load(payment_id)
        assert payment.status == PaymentStatus.FAILED.value
        assert payment.failure_code == "DECLINED"
        assert payment.transactions[0].status == TransactionStatus.FAILED.value

    def test_manual_payment_waits_for_confirmation(self, order_service):
        payment_id = _create_payment(order_service, payment_method="BANK_TRANSFER", gateway="MANUAL")
        payment = _load(payment_id)
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.transactions[0].status == TransactionStatus.PENDING.value


class TestCreatePaymentValidation:
    def test_amount_must_be_positive(self, order_service):
        with pytest.raises(ValidationError):
            _create_payment(order_service, register=False, amount=0.0)

    def test_unknown_order(self, order_service):
        with pytest.raises(OrderNotFound):
            _create_payment(order_service, register=False)

    def test_order_service_unavailable(self, order_service):
        order_service.configure(available=False)
        with pytest.raises(CollaboratorUnavailable):
            _create_payment(order_service)

    def test_amount_must_match_order_total(self, order_service):
        order_service.register_order("ord-001", 99.99)
        with pytest.raises(ValidationError) as exc:
            _create_payment(order_service, register=False, amount=100.00)
        assert "does not match order total amount (99.99)" in str(exc.value.messages)
        assert current_domain.repository_for(Payment).exists_for_order("ord-001") is False

    def test_below_minimum(self, order_service):
        with pytest.raises(ValidationError) as exc:
            _create_payment(order_service, amount=0.25)
        assert exc.value.messages["amount"] == ["Payment amount is below minimum: 0.50"]

    def test_above_maximum(self, order_service):
        configure_settings(max_payment_amount=50.00)
        with pytest.raises(ValidationError) as exc:
            _create_payment(order_service, amount=75.00)
        assert exc.value.messages["amount"] == ["Payment amount exceeds maximum: 50.00"]

    def test_daily_limit(self, order_service):
        configure_settings(daily_payment_limit=150.00)
        _create_payment(order_service, order_id="ord-001", amount=100.00)
        with pytest.raises(ValidationError) as exc:
            _create_payment(order_service, order_id="ord-002", amount=60.00)
        assert exc.value.messages["amount"] == ["Daily payment limit exceeded"]

    def test_daily_limit_is_per_user(self, order_service):
        configure_settings(daily_payment_limit=150.00)
        _create_payment(order_service, order_id="ord-001", amount=100.00)
        payment_id = _create_payment(order_service, order_id="ord-002", user_id="user-002", amount=100.00)
        assert payment_id is not None

    def test_failed_payments_do_not_count_towards_daily_limit(self, order_service, gateway):
        configure_settings(daily_payment_limit=150.00)
        gateway.configure(payment_success_rate=0.0)
        _create_payment(order_service, order_id="ord-001", amount=100.00)
        gateway.configure(payment_success_rate=1.0)
        payment_id = _create_payment(order_service, order_id="ord-002", amount=100.00)
        assert _load(payment_id).status == PaymentStatus.COMPLETED.value

    def test_duplicate_payment_for_order(self, order_service):
        _create_payment(order_service)
        with pytest.raises(DuplicatePayment) as exc:
            _create_payment(order_service, register=False)
        assert str(exc.value) == "Payment already exists for order: ord-001"
        assert exc.value.code == "DUPLICATE_PAYMENT"

    def test_duplicate_of_failed_payment(self, order_service, gateway):
        gateway.configure(payment_success_rate=0.0)
        payment_id = _create_payment(order_service)
        assert _load(payment_id).status == PaymentStatus.FAILED.value
        with pytest.raises(DuplicatePayment):
            _create_payment(order_service, register=False)

    def test_duplicate_of_pending_payment(self, order_service):
        payment_id = _create_payment(order_service, payment_method="BANK_TRANSFER", gateway="MANUAL")
        assert _load(payment_id).status == PaymentStatus.PENDING.value
        with pytest.raises(DuplicatePayment):
            _create_payment(order_service, register=False, payment_method="BANK_TRANSFER", gateway="MANUAL")

    def test_duplicate_of_cancelled_payment(self, order_service):
        payment_id = _create_payment(order_service, payment_method="BANK_TRANSFER", gateway="MANUAL")
        current_domain.process(CancelPayment(payment_id=payment_id, reason="Changed mind"), asynchronous=False)
        assert _load(payment_id).status == PaymentStatus.CANCELLED.value
        with pytest.raises(DuplicatePayment):
            _create_payment(order_service, register=False)

    def test_duplicate_wins_over_daily_limit(self, order_service):
        configure_settings(daily_payment_limit=150.00)
        _create_payment(order_service)
        with pytest.raises(DuplicatePayment):
            _create_payment(order_service, register=False)

    def test_duplicate_wins_over_order_service_outage(self, order_service):
        _create_payment(order_service)
        order_service.configure(available=False)
        with pytest.raises(DuplicatePayment):
            _create_payment(order_service, register=False)

    def test_duplicate_wins_over_amount_mismatch(self, order_service):
        _create_payment(order_service)
        with pytest.raises(DuplicatePayment):
            _create_payment(order_service, register=False, amount=55.00)

    def test_concurrent_creation_for_same_order(self, order_service):
        order_service.register_order("ord-001", 100.00)
        with creations.attempt("order:ord-001"):
            with pytest.raises(DuplicatePayment):
                _create_payment(order_service, register=False)
