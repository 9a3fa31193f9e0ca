"""Checkout, payment and order API endpoints."""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Header,
    HTTPException,
    Query,
    Request,
    Response,
)
from sqlalchemy.orm import Session

from app.core.auth import get_current_user_id, require_staff
from app.core.database import get_db
from app.core.errors import CommerceError, InvalidSignature, to_http_exception
from app.models.order import Order, OrderItem, OrderStatusEvent
from app.models.payment_attempt import PaymentAttempt
from app.schemas.order import (
    OrderDetailResponse,
    OrderItemResponse,
    OrderListItem,
    OrderMetricsResponse,
    OrderResponse,
    OrderStatusEventResponse,
    OrderStatusUpdate,
)
from app.schemas.payment import (
    CheckoutSummaryResponse,
    CreatePaymentOrderRequest,
    CreatePaymentOrderResponse,
    RetryPaymentRequest,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookAck,
    address_dict,
)
from app.services.checkout_service import CheckoutService, CheckoutSummary
from app.services.order_service import OrderService
from app.services.payment_gateway import PaymentGatewayBase, get_payment_gateway
from app.services.payment_service import PaymentService
from app.services.webhook_reconciliation_service import (
    STATUS_DEFERRED,
    WebhookReconciliationService,
)
from app.tasks import enqueue_order_confirmation

logger = logging.getLogger(__name__)

router = APIRouter()


async def _enqueue_confirmation(order_id: str) -> None:
    try:
        await enqueue_order_confirmation(order_id)
    except Exception:
        logger.exception("Failed to enqueue confirmation email for order %s", order_id)


def _gateway_order_response(
    gateway: PaymentGatewayBase, attempt: PaymentAttempt, summary: CheckoutSummary
) -> CreatePaymentOrderResponse:
    return CreatePaymentOrderResponse(
        key_id=gateway.key_id,
        attempt_id=attempt.id,  # type: ignore[arg-type]
        gateway_order_id=str(attempt.gateway_order_id),
        amount_subunits=int(attempt.amount_subunits),  # type: ignore[arg-type]
        currency=str(attempt.currency),
        expires_at=attempt.expires_at,  # type: ignore[arg-type]
        summary=CheckoutSummaryResponse(**summary.to_response()),
    )


def _order_detail(
    order: Order, items: list[OrderItem], events: list[OrderStatusEvent]
) -> OrderDetailResponse:
    return OrderDetailResponse(
        **OrderResponse.model_validate(order).model_dump(),
        items=[OrderItemResponse.model_validate(item) for item in items],
        events=[OrderStatusEventResponse.model_validate(event) for event in events],
        settlement_snapshot=order.settlement_snapshot,  # type: ignore[arg-type]
    )


# Checkout


@router.post(
    "/checkout/summary",
    response_model=CheckoutSummaryResponse,
    summary="Price the cart",
    responses={
        400: {"description": "Empty cart, unavailable item or invalid coupon"},
        401: {"description": "Unauthorized"},
    },
)
async def checkout_summary(
    data: CreatePaymentOrderRequest,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
) -> CheckoutSummaryResponse:
    """Compute subtotal, shipping, discount and total from the live cart."""
    try:
        summary = CheckoutService(db).compute_summary(
            user_id, data.coupon_code, address_dict(data.shipping_address)
        )
    except CommerceError as exc:
        raise to_http_exception(exc) from exc
    return CheckoutSummaryResponse(**summary.to_response())


@router.post(
    "/razorpay/order",
    response_model=CreatePaymentOrderResponse,
    status_code=201,
    summary="Create gateway order",
    responses={
        400: {"description": "Empty cart, unavailable item or invalid coupon"},
        401: {"description": "Unauthorized"},
        409: {"description": "Insufficient stock"},
        502: {"description": "Payment gateway error"},
    },
)
async def create_gateway_order(
    data: CreatePaymentOrderRequest,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    gateway: PaymentGatewayBase = Depends(get_payment_gateway),
) -> CreatePaymentOrderResponse:
    """Open a gateway order for the caller's cart and reserve its stock."""
    try:
        attempt, summary = PaymentService(db, gateway).create_gateway_order(
            user_id,
            coupon_code=data.coupon_code,
            billing_address=address_dict(data.billing_address),
            shipping_address=address_dict(data.shipping_address),
        )
    except CommerceError as exc:
        raise to_http_exception(exc) from exc
    return _gateway_order_response(gateway, attempt, summary)


@router.post(
    "/razorpay/verify",
    response_model=VerifyPaymentResponse,
    summary="Verify payment",
    responses={
        400: {"description": "Invalid signature or amount mismatch"},
        401: {"description": "Unauthorized"},
        404: {"description": "Payment attempt not found"},
        409: {"description": "Verification in progress or cart changed"},
        502: {"description": "Payment gateway error"},
    },
)
async def verify_payment(
    data: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    gateway: PaymentGatewayBase = Depends(get_payment_gateway),
) -> VerifyPaymentResponse:
    """Verify the checkout callback and create the order exactly once."""
    try:
        order, already = PaymentService(db, gateway).verify_payment(
            user_id,
            data.razorpay_order_id,
            data.razorpay_payment_id,
            data.razorpay_signature,
        )
    except CommerceError as exc:
        raise to_http_exception(exc) from exc
    if not already:
        background_tasks.add_task(_enqueue_confirmation, str(order.id))
    return VerifyPaymentResponse(
        order=OrderResponse.model_validate(order), already_processed=already
    )


@router.post(
    "/razorpay/retry",
    response_model=CreatePaymentOrderResponse,
    status_code=201,
    summary="Retry payment",
    responses={
        400: {"description": "Payment cannot be retried"},
        401: {"description": "Unauthorized"},
        404: {"description": "No payment to retry"},
        409: {"description": "Insufficient stock"},
        502: {"description": "Payment gateway error"},
    },
)
async def retry_payment(
    data: RetryPaymentRequest,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    gateway: PaymentGatewayBase = Depends(get_payment_gateway),
) -> CreatePaymentOrderResponse:
    """Open a fresh gateway order from a failed or expired attempt."""
    try:
        attempt, summary = PaymentService(db, gateway).retry_payment(
            user_id, data.gateway_order_id
        )
    except CommerceError as exc:
        raise to_http_exception(exc) from exc
    return _gateway_order_response(gateway, attempt, summary)


@router.post(
    "/razorpay/webhook",
    response_model=WebhookAck,
    summary="Receive gateway webhook",
    responses={
        400: {"description": "Invalid JSON payload"},
        401: {"description": "Invalid signature"},
        409: {"description": "Event deferred; the gateway should redeliver"},
    },
)
async def razorpay_webhook(
    request: Request,
    razorpay_signature: str | None = Header(None, alias="X-Razorpay-Signature"),
    razorpay_event_id: str | None = Header(None, alias="X-Razorpay-Event-Id"),
    db: Session = Depends(get_db),
    gateway: PaymentGatewayBase = Depends(get_payment_gateway),
) -> WebhookAck:
    """Handle gateway webhooks.

    Processed, duplicate, ignored and failed events are acknowledged with 200
    so the gateway stops redelivering them.
    """
    body = await request.body()
    try:
        outcome = WebhookReconciliationService(db, gateway).handle(
            body, razorpay_signature, razorpay_event_id
        )
    except InvalidSignature as exc:
        raise to_http_exception(exc, status_code=401) from exc
    except CommerceError as exc:
        raise to_http_exception(exc) from exc

    if outcome.status == STATUS_DEFERRED:
        raise HTTPException(
            status_code=409, detail={"reason": "retry_later", "message": outcome.note}
        )
    return WebhookAck(status=outcome.status, note=outcome.note, detail=outcome.detail)


# Customer orders


@router.get(
    "/my",
    response_model=list[OrderResponse],
    summary="List my orders",
    responses={401: {"description": "Unauthorized"}},
)
async def list_my_orders(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
) -> list[Order]:
    """List the caller's orders, newest first."""
    return OrderService(db).list_user_orders(user_id, skip=skip, limit=limit)


@router.get(
    "/my/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get my order",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Order not found"},
    },
)
async def get_my_order(
    order_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
) -> OrderDetailResponse:
    service = OrderService(db)
    try:
        order = service.get_user_order(order_id, user_id)
    except CommerceError as exc:
        raise to_http_exception(exc) from exc
    return _order_detail(order, service.order_repo.get_items(order_id), service.order_repo.get_events(order_id))


# Admin


@router.get(
    "/",
    response_model=list[OrderListItem],
    summary="List orders",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
    },
)
async def list_orders(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    status: str = Query(default="all"),
    search: str | None = Query(default=None, max_length=100),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
) -> list[OrderListItem]:
    """List orders with status, search and date filters."""
    rows, total = OrderService(db).list_orders(
        skip=skip,
        limit=limit,
        status=status,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )
    response.headers["X-Total-Count"] = str(total)
    return [
        OrderListItem(
            **OrderResponse.model_validate(order).model_dump(),
            customer_name=user.name if user else None,
            customer_email=user.email if user else None,
            customer_mobile=user.mobile if user else None,
        )
        for order, user in rows
    ]


@router.get(
    "/metrics",
    response_model=OrderMetricsResponse,
    summary="Order metrics",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
    },
)
async def order_metrics(
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
) -> dict[str, Any]:
    return OrderService(db).get_metrics()


@router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get order",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        404: {"description": "Order not found"},
    },
)
async def get_order(
    order_id: UUID,
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
) -> OrderDetailResponse:
    """Get an order with its items and status history."""
    try:
        order, items, events = OrderService(db).get_detail(order_id)
    except CommerceError as exc:
        raise to_http_exception(exc) from exc
    return _order_detail(order, items, events)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        404: {"description": "Order not found"},
        502: {"description": "Refund failed at the payment gateway"},
    },
)
async def update_order_status(
    order_id: UUID,
    data: OrderStatusUpdate,
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
    gateway: PaymentGatewayBase = Depends(get_payment_gateway),
) -> Order:
    """Change an order's status. Cancelling a paid order refunds it first."""
    try:
        return OrderService(db).update_status(order_id, data.status, data.note, gateway)
    except CommerceError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/{order_id}/refresh-payment",
    response_model=OrderDetailResponse,
    summary="Refresh payment and settlement",
    responses={
        400: {"description": "Order has no gateway payment"},
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        404: {"description": "Order not found"},
        502: {"description": "Payment gateway error"},
    },
)
async def refresh_order_payment(
    order_id: UUID,
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
    gateway: PaymentGatewayBase = Depends(get_payment_gateway),
) -> OrderDetailResponse:
    service = OrderService(db)
    try:
        order = service.refresh_payment(order_id, gateway)
    except CommerceError as exc:
        raise to_http_exception(exc) from exc
    return _order_detail(order, service.order_repo.get_items(order_id), service.order_repo.get_events(order_id))
