"""Pydantic request/response schemas for the Payments API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands and aggregates.
"""

import json
from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Payment Request Schemas
# ---------------------------------------------------------------------------
class CreatePaymentRequest(BaseModel):
    order_id: str
    user_id: str | None = None
    payment_method: str
    gateway: str = "MOCK"
    amount: float = Field(gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    description: str | None = Field(default=None, max_length=500)
    card_last_four: str | None = Field(default=None, max_length=4)
    card_brand: str | None = None
    card_type: str | None = None
    digital_wallet_provider: str | None = None
    bank_name: str | None = None
    external_transaction_id: str | None = None
    notes: str | None = None
    metadata: dict | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "ord-001",
                    "user_id": "user-001",
                    "payment_method": "CARD",
                    "gateway": "STRIPE",
                    "amount": 42.50,
                    "currency": "USD",
                    "card_last_four": "4242",
                    "card_brand": "VISA",
                }
            ]
        }
    }


class UpdatePaymentStatusRequest(BaseModel):
    status: str
    reason: str | None = None
    notes: str | None = None
    gateway_response: str | None = None


class CancelPaymentRequest(BaseModel):
    reason: str | None = None


class ConfigureGatewayRequest(BaseModel):
    payment_success_rate: float | None = Field(default=None, ge=0, le=1)
    refund_success_rate: float | None = Field(default=None, ge=0, le=1)
    seed: int | None = None


# ---------------------------------------------------------------------------
# Refund Request Schemas
# ---------------------------------------------------------------------------
class CreateRefundRequest(BaseModel):
    payment_id: str
    amount: float = Field(gt=0)
    reason: str | None = Field(default=None, max_length=1000)
    requested_by: str | None = None
    notes: str | None = None
    metadata: dict | None = None


class RejectRefundRequest(BaseModel):
    reason: str | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class TransactionResponse(BaseModel):
    id: str
    payment_id: str
    refund_id: str | None = None
    transaction_type: str
    status: str
    amount: float
    currency: str
    gateway_transaction_id: str | None = None
    gateway_response: str | None = None
    failure_reason: str | None = None
    failure_code: str | None = None
    created_at: datetime | None = None
    processed_at: datetime | None = None

    @classmethod
    def from_entity(cls, transaction, payment_id: str) -> "TransactionResponse":
        return cls(
            id=str(transaction.id),
            payment_id=str(payment_id),
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

    @classmethod
    def from_log_entry(cls, entry) -> "TransactionResponse":
        return cls(
            id=str(entry.transaction_id),
            payment_id=str(entry.payment_id),
            refund_id=str(entry.refund_id) if entry.refund_id else None,
            transaction_type=entry.transaction_type,
            status=entry.status,
            amount=entry.amount,
            currency=entry.currency,
            gateway_transaction_id=entry.gateway_transaction_id,
            gateway_response=entry.gateway_response,
            failure_reason=entry.failure_reason,
            failure_code=entry.failure_code,
            created_at=entry.created_at,
            processed_at=entry.processed_at,
        )


class RefundResponse(BaseModel):
    id: str
    payment_id: str
    reference: str | None = None
    status: str
    amount: float
    currency: str | None = None
    reason: str | None = None
    requested_by: str | None = None
    approved_by: str | None = None
    gateway_refund_id: str | None = None
    gateway_response: str | None = None
    failure_reason: str | None = None
    failure_code: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None

    @classmethod
    def from_entity(cls, refund, payment_id: str) -> "RefundResponse":
        return cls(
            id=str(refund.id),
            payment_id=str(payment_id),
            **_refund_fields(refund),
        )

    @classmethod
    def from_view(cls, view) -> "RefundResponse":
        return cls(
            id=str(view.refund_id),
            payment_id=str(view.payment_id),
            **_refund_fields(view),
        )


def _refund_fields(refund) -> dict:
    return {
        "reference": refund.reference,
        "status": refund.status,
        "amount": refund.amount,
        "currency": refund.currency,
        "reason": refund.reason,
        "requested_by": str(refund.requested_by) if refund.requested_by else None,
        "approved_by": str(refund.approved_by) if refund.approved_by else None,
        "gateway_refund_id": refund.gateway_refund_id,
        "gateway_response": refund.gateway_response,
        "failure_reason": refund.failure_reason,
        "failure_code": refund.failure_code,
        "notes": refund.notes,
        "created_at": refund.created_at,
        "updated_at": refund.updated_at,
        "processed_at": refund.processed_at,
        "completed_at": refund.completed_at,
        "failed_at": refund.failed_at,
    }


class PaymentResponse(BaseModel):
    id: str
    reference: str
    order_id: str
    user_id: str
    payment_method: str
    gateway: str
    status: str
    amount: float
    currency: str
    description: str | None = None
    card_last_four: str | None = None
    card_brand: str | None = None
    card_type: str | None = None
    digital_wallet_provider: str | None = None
    bank_name: str | None = None
    external_transaction_id: str | None = None
    gateway_payment_id: str | None = None
    gateway_response: str | None = None
    gateway_fee: float = 0.0
    net_amount: float | None = None
    total_refunded: float = 0.0
    refundable_amount: float = 0.0
    can_be_refunded: bool = False
    can_be_retried: bool = False
    is_expired: bool = False
    failure_reason: str | None = None
    failure_code: str | None = None
    retry_count: int = 0
    last_retry_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    authorized_at: datetime | None = None
    captured_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None
    expires_at: datetime | None = None
    metadata: dict | None = None
    notes: str | None = None
    transactions: list[TransactionResponse] = []
    refunds: list[RefundResponse] = []

    @classmethod
    def from_aggregate(cls, payment, include_children: bool = True) -> "PaymentResponse":
        return cls(
            id=str(payment.id),
            reference=payment.reference,
            order_id=str(payment.order_id),
            user_id=str(payment.user_id),
            payment_method=payment.payment_method,
            gateway=payment.gateway,
            status=payment.status,
            amount=payment.amount,
            currency=payment.currency,
            description=payment.description,
            card_last_four=payment.card_last_four,
            card_brand=payment.card_brand,
            card_type=payment.card_type,
            digital_wallet_provider=payment.digital_wallet_provider,
            bank_name=payment.bank_name,
            external_transaction_id=payment.external_transaction_id,
            gateway_payment_id=payment.gateway_payment_id,
            gateway_response=payment.gateway_response,
            gateway_fee=payment.gateway_fee or 0.0,
            net_amount=payment.net_amount,
            total_refunded=payment.total_refunded_amount(),
            refundable_amount=payment.refundable_amount(),
            can_be_refunded=payment.can_be_refunded(),
            can_be_retried=payment.can_be_retried(),
            is_expired=payment.is_expired(),
            failure_reason=payment.failure_reason,
            failure_code=payment.failure_code,
            retry_count=payment.retry_count or 0,
            last_retry_at=payment.last_retry_at,
            created_at=payment.created_at,
            updated_at=payment.updated_at,
            authorized_at=payment.authorized_at,
            captured_at=payment.captured_at,
            failed_at=payment.failed_at,
            cancelled_at=payment.cancelled_at,
            expires_at=payment.expires_at,
            metadata=json.loads(payment.metadata) if payment.metadata else None,
            notes=payment.notes,
            transactions=[TransactionResponse.from_entity(t, payment.id) for t in payment.transactions or []]
            if include_children
            else [],
            refunds=[RefundResponse.from_entity(r, payment.id) for r in payment.refunds or []]
            if include_children
            else [],
        )


class PaymentPage(BaseModel):
    items: list[PaymentResponse]
    total: int
    offset: int
    limit: int


class RefundPage(BaseModel):
    items: list[RefundResponse]
    total: int
    offset: int
    limit: int


class TransactionPage(BaseModel):
    items: list[TransactionResponse]
    total: int
    offset: int
    limit: int


class GatewayConfigResponse(BaseModel):
    gateway: str
    payment_success_rate: float
    refund_success_rate: float


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict | None = None


class ErrorResponse(BaseModel):
    error: ErrorBody


class RegisterOrderRequest(BaseModel):
    order_id: str
    total_amount: float = Field(gt=0)
    user_id: str | None = None


class RegisteredOrderResponse(BaseModel):
    order_id: str
    total_amount: float
