"""FastAPI routes for the Payments domain — payments, refunds and transactions.

Callers identify themselves with ``X-User-Id`` and ``X-User-Role`` headers.
Listing and administrative endpoints need the ADMIN role; single-resource
endpoints are open to the resource owner or an ADMIN.
"""

import json
import os
from datetime import datetime

from fastapi import APIRouter, Header, HTTPException, Query
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from payments import queries
from payments.api.schemas import (
    CancelPaymentRequest,
    ConfigureGatewayRequest,
    CreatePaymentRequest,
    CreateRefundRequest,
    GatewayConfigResponse,
    PaymentPage,
    PaymentResponse,
    RefundPage,
    RefundResponse,
    RegisteredOrderResponse,
    RegisterOrderRequest,
    RejectRefundRequest,
    TransactionPage,
    TransactionResponse,
    UpdatePaymentStatusRequest,
)
from payments.gateway import get_gateway
from payments.gateway.simulator import GatewaySimulator
from payments.orders import get_order_service
from payments.orders.fake_adapter import FakeOrderService
from payments.payment.cancellation import CancelPayment
from payments.payment.creation import CreatePayment
from payments.payment.payment import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    TransactionStatus,
    TransactionType,
)
from payments.payment.refund import ApproveRefund, RejectRefund, RequestRefund
from payments.payment.retry import RetryPayment
from payments.payment.status_update import UpdatePaymentStatus

ADMIN_ROLE = "ADMIN"


# ---------------------------------------------------------------------------
# Access helpers
# ---------------------------------------------------------------------------
def _is_admin(role: str | None) -> bool:
    return (role or "").upper() == ADMIN_ROLE


def _require_admin(role: str | None) -> None:
    if not _is_admin(role):
        raise HTTPException(status_code=403, detail="Admin role required")


def _require_owner_or_admin(owner_id, user_id: str | None, role: str | None) -> None:
    if _is_admin(role):
        return
    if user_id is None or str(owner_id) != str(user_id):
        raise HTTPException(status_code=403, detail="Access denied")


def _parse_enum(enum_cls, value: str, field: str):
    try:
        return enum_cls(value.upper())
    except ValueError:
        raise ValidationError({field: [f"Unknown {field}: {value}"]}) from None


def _payments_repo():
    return current_domain.repository_for(Payment)


def _payment_page(results, offset: int, limit: int) -> PaymentPage:
    repo = _payments_repo()
    return PaymentPage(
        items=[PaymentResponse.from_aggregate(repo.get(p.id), include_children=False) for p in results.items],
        total=results.total,
        offset=offset,
        limit=limit,
    )


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/api/payments", tags=["payments"])


@payment_router.post("", status_code=201, response_model=PaymentResponse)
async def create_payment(
    body: CreatePaymentRequest,
    x_user_id: str | None = Header(default=None),
) -> PaymentResponse:
    """Create a payment for an order. Settlement happens asynchronously."""
    user_id = x_user_id or body.user_id
    if not user_id:
        raise ValidationError({"user_id": ["User id is required"]})

    command = CreatePayment(
        order_id=body.order_id,
        user_id=user_id,
        payment_method=_parse_enum(PaymentMethod, body.payment_method, "payment_method").value,
        gateway=body.gateway.upper(),
        amount=body.amount,
        currency=body.currency.upper(),
        description=body.description,
        card_last_four=body.card_last_four,
        card_brand=body.card_brand,
        card_type=body.card_type,
        digital_wallet_provider=body.digital_wallet_provider,
        bank_name=body.bank_name,
        external_transaction_id=body.external_transaction_id,
        notes=body.notes,
        metadata=json.dumps(body.metadata) if body.metadata is not None else None,
    )
    payment_id = current_domain.process(command, asynchronous=False)
    return PaymentResponse.from_aggregate(_payments_repo().get(payment_id))


@payment_router.get("", response_model=PaymentPage)
async def list_payments(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_role: str | None = Header(default=None),
) -> PaymentPage:
    _require_admin(x_user_role)
    return _payment_page(_payments_repo().find_all(offset, limit), offset, limit)


@payment_router.get("/statistics")
async def payment_statistics(
    start: datetime | None = None,
    end: datetime | None = None,
    x_user_role: str | None = Header(default=None),
) -> dict:
    _require_admin(x_user_role)
    return queries.payment_statistics(start, end)


@payment_router.get("/status/{status}", response_model=PaymentPage)
async def list_payments_by_status(
    status: str,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_role: str | None = Header(default=None),
) -> PaymentPage:
    _require_admin(x_user_role)
    status_value = _parse_enum(PaymentStatus, status, "status").value
    return _payment_page(_payments_repo().find_by_status(status_value, offset, limit), offset, limit)


@payment_router.get("/user/{user_id}", response_model=PaymentPage)
async def list_user_payments(
    user_id: str,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> PaymentPage:
    _require_owner_or_admin(user_id, x_user_id, x_user_role)
    return _payment_page(_payments_repo().find_by_user(user_id, offset, limit), offset, limit)


@payment_router.get("/reference/{reference}", response_model=PaymentResponse)
async def get_payment_by_reference(
    reference: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> PaymentResponse:
    payment = _payments_repo().get_by_reference(reference)
    _require_owner_or_admin(payment.user_id, x_user_id, x_user_role)
    return PaymentResponse.from_aggregate(payment)


@payment_router.get("/order/{order_id}", response_model=PaymentResponse)
async def get_payment_by_order(
    order_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> PaymentResponse:
    payment = _payments_repo().get_by_order(order_id)
    _require_owner_or_admin(payment.user_id, x_user_id, x_user_role)
    return PaymentResponse.from_aggregate(payment)


@payment_router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> PaymentResponse:
    payment = _payments_repo().get(payment_id)
    _require_owner_or_admin(payment.user_id, x_user_id, x_user_role)
    return PaymentResponse.from_aggregate(payment)


@payment_router.put("/{payment_id}/status", response_model=PaymentResponse)
async def update_payment_status(
    payment_id: str,
    body: UpdatePaymentStatusRequest,
    x_user_role: str | None = Header(default=None),
) -> PaymentResponse:
    """Administrative status override."""
    _require_admin(x_user_role)
    command = UpdatePaymentStatus(
        payment_id=payment_id,
        status=_parse_enum(PaymentStatus, body.status, "status").value,
        reason=body.reason,
        notes=body.notes,
        gateway_response=body.gateway_response,
    )
    current_domain.process(command, asynchronous=False)
    return PaymentResponse.from_aggregate(_payments_repo().get(payment_id))


@payment_router.post("/{payment_id}/cancel", response_model=PaymentResponse)
async def cancel_payment(
    payment_id: str,
    body: CancelPaymentRequest | None = None,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> PaymentResponse:
    payment = _payments_repo().get(payment_id)
    _require_owner_or_admin(payment.user_id, x_user_id, x_user_role)
    command = CancelPayment(payment_id=payment_id, reason=body.reason if body else None)
    current_domain.process(command, asynchronous=False)
    return PaymentResponse.from_aggregate(_payments_repo().get(payment_id))


@payment_router.post("/{payment_id}/retry", response_model=PaymentResponse)
async def retry_payment(
    payment_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> PaymentResponse:
    """Retry a failed payment."""
    payment = _payments_repo().get(payment_id)
    _require_owner_or_admin(payment.user_id, x_user_id, x_user_role)
    current_domain.process(RetryPayment(payment_id=payment_id), asynchronous=False)
    return PaymentResponse.from_aggregate(_payments_repo().get(payment_id))


@payment_router.get("/{payment_id}/transactions", response_model=list[TransactionResponse])
async def list_payment_transactions(
    payment_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> list[TransactionResponse]:
    payment = _payments_repo().get(payment_id)
    _require_owner_or_admin(payment.user_id, x_user_id, x_user_role)
    return [TransactionResponse.from_entity(t, payment.id) for t in payment.transactions or []]


@payment_router.post("/dev/orders", status_code=201, response_model=RegisteredOrderResponse)
async def register_order(
    body: RegisterOrderRequest,
    x_user_role: str | None = Header(default=None),
) -> RegisteredOrderResponse:
    """Seed the in-memory Order service (non-production only).

    Manual and load testing have no real Order service to validate totals
    against; this endpoint registers orders with the fake one.
    """
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Order seeding not available in production")
    _require_admin(x_user_role)

    service = get_order_service()
    if not isinstance(service, FakeOrderService):
        raise HTTPException(status_code=400, detail="Order seeding only available for FakeOrderService")

    order = service.register_order(body.order_id, body.total_amount, user_id=body.user_id)
    return RegisteredOrderResponse(order_id=order.order_id, total_amount=order.total_amount)


@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(
    body: ConfigureGatewayRequest,
    x_user_role: str | None = Header(default=None),
) -> GatewayConfigResponse:
    """Tune the gateway simulator (non-production only).

    Lets manual API testing pin success rates or reseed the simulator.
    """
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")
    _require_admin(x_user_role)

    gateway = get_gateway()
    if not isinstance(gateway, GatewaySimulator):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for GatewaySimulator")

    gateway.configure(
        payment_success_rate=body.payment_success_rate,
        refund_success_rate=body.refund_success_rate,
        seed=body.seed,
    )
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        payment_success_rate=gateway.payment_success_rate,
        refund_success_rate=gateway.refund_success_rate,
    )


# ---------------------------------------------------------------------------
# Refund Router
# ---------------------------------------------------------------------------
refund_router = APIRouter(prefix="/api/refunds", tags=["refunds"])


def _refund_page(results, offset: int, limit: int) -> RefundPage:
    return RefundPage(
        items=[RefundResponse.from_view(r) for r in results.items],
        total=results.total,
        offset=offset,
        limit=limit,
    )


@refund_router.post("", status_code=201, response_model=RefundResponse)
async def create_refund(
    body: CreateRefundRequest,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> RefundResponse:
    """Request a refund. Settlement happens asynchronously."""
    payment = _payments_repo().get(body.payment_id)
    _require_owner_or_admin(payment.user_id, x_user_id, x_user_role)

    requested_by = x_user_id or body.requested_by
    if not requested_by:
        raise ValidationError({"requested_by": ["Requester id is required"]})

    command = RequestRefund(
        payment_id=body.payment_id,
        amount=body.amount,
        reason=body.reason,
        requested_by=requested_by,
        notes=body.notes,
        metadata=json.dumps(body.metadata) if body.metadata is not None else None,
    )
    refund_id = current_domain.process(command, asynchronous=False)
    payment = _payments_repo().get(body.payment_id)
    return RefundResponse.from_entity(payment.get_refund(refund_id), payment.id)


@refund_router.get("", response_model=RefundPage)
async def list_refunds(
    status: str | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_role: str | None = Header(default=None),
) -> RefundPage:
    _require_admin(x_user_role)
    status_value = _parse_enum(RefundStatus, status, "status").value if status else None
    return _refund_page(queries.list_refunds(offset, limit, status=status_value), offset, limit)


@refund_router.get("/statistics")
async def refund_statistics(
    start: datetime | None = None,
    end: datetime | None = None,
    x_user_role: str | None = Header(default=None),
) -> dict:
    _require_admin(x_user_role)
    return queries.refund_statistics(start, end)


@refund_router.get("/search", response_model=list[RefundResponse])
async def search_refunds(
    q: str = Query(min_length=1),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_role: str | None = Header(default=None),
) -> list[RefundResponse]:
    _require_admin(x_user_role)
    return [RefundResponse.from_view(r) for r in queries.search_refunds(q, offset, limit)]


@refund_router.get("/filter", response_model=list[RefundResponse])
async def filter_refunds(
    status: str | None = None,
    requested_by: str | None = None,
    approved_by: str | None = None,
    min_amount: float | None = Query(default=None, ge=0),
    max_amount: float | None = Query(default=None, ge=0),
    start: datetime | None = None,
    end: datetime | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_role: str | None = Header(default=None),
) -> list[RefundResponse]:
    _require_admin(x_user_role)
    records = queries.filter_refunds(
        status=_parse_enum(RefundStatus, status, "status").value if status else None,
        requested_by=requested_by,
        approved_by=approved_by,
        min_amount=min_amount,
        max_amount=max_amount,
        start=start,
        end=end,
        offset=offset,
        limit=limit,
    )
    return [RefundResponse.from_view(r) for r in records]


def _refunds_with_status(status: RefundStatus, offset: int, limit: int) -> RefundPage:
    return _refund_page(queries.list_refunds(offset, limit, status=status.value), offset, limit)


@refund_router.get("/pending", response_model=RefundPage)
async def pending_refunds(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_role: str | None = Header(default=None),
) -> RefundPage:
    _require_admin(x_user_role)
    return _refunds_with_status(RefundStatus.PENDING, offset, limit)


@refund_router.get("/completed", response_model=RefundPage)
async def completed_refunds(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_role: str | None = Header(default=None),
) -> RefundPage:
    _require_admin(x_user_role)
    return _refunds_with_status(RefundStatus.COMPLETED, offset, limit)


@refund_router.get("/failed", response_model=RefundPage)
async def failed_refunds(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_role: str | None = Header(default=None),
) -> RefundPage:
    _require_admin(x_user_role)
    return _refunds_with_status(RefundStatus.FAILED, offset, limit)


@refund_router.get("/payment/{payment_id}", response_model=list[RefundResponse])
async def list_payment_refunds(
    payment_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> list[RefundResponse]:
    payment = _payments_repo().get(payment_id)
    _require_owner_or_admin(payment.user_id, x_user_id, x_user_role)
    return [RefundResponse.from_entity(r, payment.id) for r in payment.refunds or []]


@refund_router.get("/user/{user_id}", response_model=RefundPage)
async def list_user_refunds(
    user_id: str,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> RefundPage:
    _require_owner_or_admin(user_id, x_user_id, x_user_role)
    return _refund_page(queries.list_refunds(offset, limit, requested_by=user_id), offset, limit)


@refund_router.get("/reference/{reference}", response_model=RefundResponse)
async def get_refund_by_reference(
    reference: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> RefundResponse:
    payment = _payments_repo().get_by_refund_reference(reference)
    _require_owner_or_admin(payment.user_id, x_user_id, x_user_role)
    refund = next(r for r in payment.refunds if r.reference == reference)
    return RefundResponse.from_entity(refund, payment.id)


@refund_router.get("/{refund_id}", response_model=RefundResponse)
async def get_refund(
    refund_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> RefundResponse:
    payment = _payments_repo().get_by_refund(refund_id)
    _require_owner_or_admin(payment.user_id, x_user_id, x_user_role)
    return RefundResponse.from_entity(payment.get_refund(refund_id), payment.id)


@refund_router.post("/{refund_id}/approve", response_model=RefundResponse)
async def approve_refund(
    refund_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> RefundResponse:
    _require_admin(x_user_role)
    if not x_user_id:
        raise ValidationError({"approved_by": ["Approver id is required"]})

    current_domain.process(ApproveRefund(refund_id=refund_id, approved_by=x_user_id), asynchronous=False)
    payment = _payments_repo().get_by_refund(refund_id)
    return RefundResponse.from_entity(payment.get_refund(refund_id), payment.id)


@refund_router.post("/{refund_id}/reject", response_model=RefundResponse)
async def reject_refund(
    refund_id: str,
    body: RejectRefundRequest | None = None,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> RefundResponse:
    _require_admin(x_user_role)
    if not x_user_id:
        raise ValidationError({"rejected_by": ["Rejecting user id is required"]})

    command = RejectRefund(refund_id=refund_id, reason=body.reason if body else None, rejected_by=x_user_id)
    current_domain.process(command, asynchronous=False)
    payment = _payments_repo().get_by_refund(refund_id)
    return RefundResponse.from_entity(payment.get_refund(refund_id), payment.id)


# ---------------------------------------------------------------------------
# Transaction Router
# ---------------------------------------------------------------------------
transaction_router = APIRouter(prefix="/api/transactions", tags=["transactions"])


@transaction_router.get("", response_model=TransactionPage)
async def list_transactions(
    payment_id: str | None = None,
    status: str | None = None,
    transaction_type: str | None = Query(default=None, alias="type"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    x_user_role: str | None = Header(default=None),
) -> TransactionPage:
    _require_admin(x_user_role)
    results = queries.list_transactions(
        payment_id=payment_id,
        status=_parse_enum(TransactionStatus, status, "status").value if status else None,
        transaction_type=_parse_enum(TransactionType, transaction_type, "type").value if transaction_type else None,
        offset=offset,
        limit=limit,
    )
    return TransactionPage(
        items=[TransactionResponse.from_log_entry(e) for e in results.items],
        total=results.total,
        offset=offset,
        limit=limit,
    )


@transaction_router.get("/payment/{payment_id}", response_model=list[TransactionResponse])
async def list_transactions_for_payment(
    payment_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> list[TransactionResponse]:
    payment = _payments_repo().get(payment_id)
    _require_owner_or_admin(payment.user_id, x_user_id, x_user_role)
    return [TransactionResponse.from_entity(t, payment.id) for t in payment.transactions or []]


@transaction_router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: str,
    x_user_role: str | None = Header(default=None),
) -> TransactionResponse:
    _require_admin(x_user_role)
    return TransactionResponse.from_log_entry(queries.get_transaction(transaction_id))
