import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from foodorder.models.order import OrderStatus, PaymentMethod, PaymentStatus, UpdatedBy


class CustomizationRequest(BaseModel):
    """A chosen customization; additional_price is in minor units."""
    name: str = Field(..., min_length=1, max_length=100)
    selected_options: List[str] = Field(default_factory=list)
    additional_price: int = Field(0, ge=0)


class OrderItemRequest(BaseModel):
    """Schema for a single item in the order request."""
    food_item_id: uuid.UUID
    quantity: int = Field(..., ge=1)
    customizations: List[CustomizationRequest] = Field(default_factory=list)
    special_instructions: Optional[str] = Field(None, max_length=200)


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class DeliveryAddress(BaseModel):
    street: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    zip_code: str = Field(..., min_length=3, max_length=12)
    coordinates: Optional[Coordinates] = None
    instructions: Optional[str] = Field(None, max_length=200)


class OrderCreateRequest(BaseModel):
    """Schema for the full order placement request body."""
    restaurant_id: uuid.UUID
    items: List[OrderItemRequest] = Field(..., min_length=1)
    delivery_address: DeliveryAddress
    payment_method: PaymentMethod = PaymentMethod.CARD
    idempotency_key: str = Field(..., min_length=10, max_length=100)
    special_instructions: Optional[str] = Field(None, max_length=500)
    contactless_delivery: bool = False


class OrderStatusUpdate(BaseModel):
    """Schema for a restaurant moving an order forward."""
    status: OrderStatus
    note: Optional[str] = Field(None, max_length=200)


class ConfirmRequest(BaseModel):
    note: Optional[str] = Field(None, max_length=200)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=5, max_length=200)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class OrderItemResponse(BaseModel):
    """Schema for an item inside the detailed order response."""
    model_config = ConfigDict(from_attributes=True)

    food_item_id: uuid.UUID
    name: str
    quantity: int
    unit_price: int
    customizations: List[Dict[str, Any]]
    special_instructions: Optional[str] = None
    preparation_time: int
    line_total: int


class TimelineEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: OrderStatus
    timestamp: datetime
    note: Optional[str] = None
    updated_by: UpdatedBy


class OrderResponse(BaseModel):
    """Order as seen by its customer or restaurant. Money is in minor units."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    customer_id: uuid.UUID
    restaurant_id: uuid.UUID
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    subtotal: int
    delivery_fee: int
    taxes: int
    platform_fee: int
    discount_amount: int
    total_price: int
    currency: str
    delivery_address: Dict[str, Any]
    special_instructions: Optional[str] = None
    contactless_delivery: bool
    estimated_preparation_time: Optional[int] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    items: List[OrderItemResponse] = Field(default_factory=list)
    timeline: List[TimelineEntryResponse] = Field(default_factory=list)


class OrderPlacementResponse(BaseModel):
    """Response schema for a newly placed (or replayed) order."""
    order: OrderResponse
    payment_intent: Optional[Dict[str, Any]] = None


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_orders: int
    has_next_page: bool
    has_prev_page: bool


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    pagination: Pagination
