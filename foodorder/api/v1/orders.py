import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from foodorder.api.deps import client_ip, get_order_service, get_order_status_service
from foodorder.core.principal import Principal, RestaurantPrincipal, UserPrincipal
from foodorder.core.security import get_principal, require_restaurant, require_user
from foodorder.models.order import Order, OrderStatus, PaymentStatus
from foodorder.schemas.order import (
    CancelRequest,
    ConfirmRequest,
    OrderCreateRequest,
    OrderItemResponse,
    OrderListResponse,
    OrderPlacementResponse,
    OrderResponse,
    OrderStatusUpdate,
    RejectRequest,
    TimelineEntryResponse,
)
from foodorder.schemas.response import SuccessResponse
from foodorder.services.order_service import OrderService
from foodorder.services.order_status import OrderStatusService

router = APIRouter()
log = logging.getLogger(__name__)


def order_to_response(order: Order, with_items: bool = True, with_timeline: bool = False) -> Dict[str, Any]:
    """Serializes an order; related rows must already be fetched."""
    data = OrderResponse(
        id=order.id,
        order_number=order.order_number,
        customer_id=order.customer_id,
        restaurant_id=order.restaurant_id,
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        subtotal=order.subtotal,
        delivery_fee=order.delivery_fee,
        taxes=order.taxes,
        platform_fee=order.platform_fee,
        discount_amount=order.discount_amount,
        total_price=order.total_price,
        currency=order.currency,
        delivery_address=order.delivery_address,
        special_instructions=order.special_instructions,
        contactless_delivery=order.contactless_delivery,
        estimated_preparation_time=order.estimated_preparation_time,
        rejection_reason=order.rejection_reason,
        cancellation_reason=order.cancellation_reason,
        created_at=order.created_at,
        confirmed_at=order.confirmed_at,
        completed_at=order.completed_at,
        items=[OrderItemResponse.model_validate(i) for i in order.items] if with_items else [],
        timeline=[TimelineEntryResponse.model_validate(t) for t in order.timeline] if with_timeline else [],
    )
    return data.model_dump(mode="json")


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def create_order_endpoint(
    request: Request,
    request_data: OrderCreateRequest,
    principal: UserPrincipal = Depends(require_user),
    service: OrderService = Depends(get_order_service),
):
    """
    Places a new order and opens its payment intent. A repeated idempotency
    key returns the existing order with 200 and code ORDER_EXISTS.
    """
    placement = await service.create_order(
        customer_id=principal.id,
        restaurant_id=request_data.restaurant_id,
        items=[item.model_dump() for item in request_data.items],
        delivery_address=request_data.delivery_address.model_dump(),
        idempotency_key=request_data.idempotency_key,
        payment_method=request_data.payment_method,
        special_instructions=request_data.special_instructions,
        contactless_delivery=request_data.contactless_delivery,
        ip_address=client_ip(request),
    )
    await placement.order.fetch_related("items")
    data = OrderPlacementResponse(
        order=order_to_response(placement.order),
        payment_intent=placement.payment_intent,
    ).model_dump(mode="json")

    if not placement.created:
        body = SuccessResponse(data=data, code="ORDER_EXISTS", message="Order already exists")
        return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump())
    return SuccessResponse(data=data, message="Order created successfully")


@router.get("/user", response_model=SuccessResponse)
async def list_user_orders_endpoint(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: UserPrincipal = Depends(require_user),
    service: OrderService = Depends(get_order_service),
):
    orders, pagination = await service.list_customer_orders(principal.id, status_filter, page, limit)
    data = OrderListResponse(orders=[order_to_response(o) for o in orders], pagination=pagination)
    return SuccessResponse(data=data.model_dump(mode="json"))


@router.get("/restaurant", response_model=SuccessResponse)
async def list_restaurant_orders_endpoint(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    principal: RestaurantPrincipal = Depends(require_restaurant),
    service: OrderService = Depends(get_order_service),
):
    orders, pagination = await service.list_restaurant_orders(
        principal.id, status_filter, page, limit, sort_by, sort_order
    )
    data = OrderListResponse(orders=[order_to_response(o) for o in orders], pagination=pagination)
    return SuccessResponse(data=data.model_dump(mode="json"))


@router.get("/restaurant/latest", response_model=SuccessResponse)
async def latest_pending_order_endpoint(
    principal: RestaurantPrincipal = Depends(require_restaurant),
    service: OrderService = Depends(get_order_service),
):
    """The newest paid order waiting for the restaurant to confirm or reject it."""
    order = await service.latest_pending_order(principal.id)
    if order is None:
        return SuccessResponse(data=None, message="No pending orders.")
    return SuccessResponse(data=order_to_response(order))


@router.get("/{order_id}", response_model=SuccessResponse)
async def get_order_endpoint(
    order_id: UUID,
    principal: Principal = Depends(get_principal),
    service: OrderService = Depends(get_order_service),
):
    """Fetches details for a specific order, including its timeline."""
    order = await service.get_order(order_id, principal)
    return SuccessResponse(data=order_to_response(order, with_timeline=True))


@router.patch("/{order_id}/status", response_model=SuccessResponse)
async def update_status_endpoint(
    order_id: UUID,
    payload: OrderStatusUpdate,
    principal: RestaurantPrincipal = Depends(require_restaurant),
    service: OrderStatusService = Depends(get_order_status_service),
):
    """Moves an order forward (preparing, ready_for_pickup, out_for_delivery, delivered)."""
    order = await service.update_status(order_id, principal, payload.status, payload.note)
    log.info(f"Order {order.id} status updated to {OrderStatus(order.status).value}.")
    return SuccessResponse(
        data={"order_id": str(order.id), "status": OrderStatus(order.status).value},
        message=f"Order status updated to {OrderStatus(order.status).value}",
    )


@router.post("/{order_id}/confirm", response_model=SuccessResponse)
async def confirm_order_endpoint(
    order_id: UUID,
    payload: Optional[ConfirmRequest] = None,
    principal: RestaurantPrincipal = Depends(require_restaurant),
    service: OrderStatusService = Depends(get_order_status_service),
):
    order = await service.confirm_order(order_id, principal, payload.note if payload else None)
    return SuccessResponse(
        data={"order_id": str(order.id), "status": OrderStatus(order.status).value},
        message="Order confirmed successfully",
    )


@router.post("/{order_id}/reject", response_model=SuccessResponse)
async def reject_order_endpoint(
    order_id: UUID,
    payload: RejectRequest,
    principal: RestaurantPrincipal = Depends(require_restaurant),
    service: OrderStatusService = Depends(get_order_status_service),
):
    """Rejects a paid order; stock is restored and the payment refunded."""
    order = await service.reject_order(order_id, principal, payload.reason)
    return SuccessResponse(
        data={
            "order_id": str(order.id),
            "status": OrderStatus(order.status).value,
            "payment_status": PaymentStatus(order.payment_status).value,
        },
        message="Order rejected successfully",
    )


@router.post("/{order_id}/cancel", response_model=SuccessResponse)
async def cancel_order_endpoint(
    order_id: UUID,
    payload: Optional[CancelRequest] = None,
    principal: UserPrincipal = Depends(require_user),
    service: OrderStatusService = Depends(get_order_status_service),
):
    """Cancels the order, restores stock and refunds a completed payment."""
    order = await service.cancel_order(order_id, principal, payload.reason if payload else None)
    return SuccessResponse(
        data={
            "order_id": str(order.id),
            "status": OrderStatus(order.status).value,
            "payment_status": PaymentStatus(order.payment_status).value,
        },
        message="Order cancelled successfully",
    )
