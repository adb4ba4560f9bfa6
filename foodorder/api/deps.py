"""Service factories for route dependencies; tests swap them via dependency_overrides."""
from typing import Optional

from fastapi import Request

from foodorder.events.dispatcher import OutboxDispatcher
from foodorder.services.gateway import RazorpayGateway
from foodorder.services.order_service import OrderService
from foodorder.services.order_status import OrderStatusService
from foodorder.services.payment_service import PaymentService


def get_gateway() -> RazorpayGateway:
    return RazorpayGateway()


def get_order_service() -> OrderService:
    return OrderService(gateway=get_gateway(), dispatcher=OutboxDispatcher())


def get_order_status_service() -> OrderStatusService:
    return OrderStatusService(gateway=get_gateway(), dispatcher=OutboxDispatcher())


def get_payment_service() -> PaymentService:
    return PaymentService(gateway=get_gateway(), dispatcher=OutboxDispatcher())


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
