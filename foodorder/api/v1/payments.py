import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request

from foodorder.api.deps import get_payment_service
from foodorder.core.principal import Principal, RestaurantPrincipal, UserPrincipal
from foodorder.core.security import get_principal, require_restaurant, require_user
from foodorder.models.order import Order, OrderStatus, PaymentStatus
from foodorder.schemas.payment import PaymentStatusResponse, RefundRequest, RefundResponse, VerifyPaymentRequest
from foodorder.schemas.response import SuccessResponse
from foodorder.services.payment_service import PaymentService

router = APIRouter()
log = logging.getLogger(__name__)


def payment_to_response(order: Order) -> dict:
    return PaymentStatusResponse(
        order_id=order.id,
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        total_price=order.total_price,
        currency=order.currency,
        payment_id=order.payment_id,
        gateway_payment_id=order.gateway_payment_id,
        payment_details=order.payment_details or {},
    ).model_dump(mode="json")


@router.post("/webhook", response_model=SuccessResponse)
async def payment_webhook_endpoint(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    service: PaymentService = Depends(get_payment_service),
):
    """
    Gateway webhook. The signature covers the raw body, so the body is read
    as bytes and only parsed after verification.
    """
    raw_body = await request.body()
    event = await service.process_webhook(raw_body, x_razorpay_signature)
    return SuccessResponse(data={"event": event}, message="Webhook processed successfully")


@router.post("/verify", response_model=SuccessResponse)
async def verify_payment_endpoint(
    payload: VerifyPaymentRequest,
    principal: UserPrincipal = Depends(require_user),
    service: PaymentService = Depends(get_payment_service),
):
    order = await service.verify_payment(payload.order_id, payload.payment_id, payload.signature, principal)
    return SuccessResponse(
        data={
            "order_id": str(order.id),
            "status": OrderStatus(order.status).value,
            "payment_status": PaymentStatus(order.payment_status).value,
        },
        message="Payment verified successfully",
    )


@router.get("/{order_id}", response_model=SuccessResponse)
async def get_payment_status_endpoint(
    order_id: UUID,
    principal: Principal = Depends(get_principal),
    service: PaymentService = Depends(get_payment_service),
):
    order = await service.get_payment_status(order_id, principal)
    return SuccessResponse(data=payment_to_response(order))


@router.post("/{order_id}/refund", response_model=SuccessResponse)
async def initiate_refund_endpoint(
    order_id: UUID,
    payload: Optional[RefundRequest] = None,
    principal: RestaurantPrincipal = Depends(require_restaurant),
    service: PaymentService = Depends(get_payment_service),
):
    """Requests a refund from the gateway; completion arrives later by webhook."""
    payload = payload or RefundRequest()
    order, refund = await service.initiate_refund(order_id, principal, payload.amount, payload.reason)
    data = RefundResponse(order_id=order.id, payment_status=order.payment_status, refund=refund)
    return SuccessResponse(data=data.model_dump(mode="json"), message="Refund initiated successfully")
