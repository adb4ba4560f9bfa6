# foodorder/models/__init__.py
from .catalog import FoodItem, Restaurant, UNLIMITED_STOCK
from .customer import Customer
from .order import (
    Order,
    OrderAuditLog,
    OrderItem,
    OrderStatus,
    OrderTimelineEntry,
    PaymentMethod,
    PaymentStatus,
    UpdatedBy,
)
from .outbox import OutboxEvent
from .processed_event import ProcessedEvent

# Export all models
__all__ = [
    "Customer",
    "FoodItem",
    "Order",
    "OrderAuditLog",
    "OrderItem",
    "OrderStatus",
    "OrderTimelineEntry",
    "OutboxEvent",
    "PaymentMethod",
    "PaymentStatus",
    "ProcessedEvent",
    "Restaurant",
    "UNLIMITED_STOCK",
    "UpdatedBy",
]
