import uuid
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from foodorder.models.order import OrderStatus, PaymentMethod, PaymentStatus


class VerifyPaymentRequest(BaseModel):
    """Checkout callback values the client forwards for manual verification."""
    order_id: uuid.UUID
    payment_id: str = Field(..., min_length=1, max_length=100)
    signature: str = Field(..., min_length=1, max_length=256)


class RefundRequest(BaseModel):
    amount: Optional[int] = Field(None, gt=0, description="Minor units; defaults to the order total.")
    reason: str = Field("Refund requested", min_length=1, max_length=200)


class PaymentStatusResponse(BaseModel):
    order_id: uuid.UUID
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    total_price: int
    currency: str
    payment_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    payment_details: Dict[str, Any] = Field(default_factory=dict)


class RefundResponse(BaseModel):
    order_id: uuid.UUID
    payment_status: PaymentStatus
    refund: Dict[str, Any]
