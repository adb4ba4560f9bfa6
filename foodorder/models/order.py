from enum import Enum
from typing import Any, Dict, Iterable, Optional
import time
import uuid

from tortoise import fields, models, timezone
from tortoise.backends.base.client import BaseDBAsyncClient

from foodorder.core.errors import InvalidStatusTransition


class OrderStatus(str, Enum):
    PENDING = "pending"  # Order created, waiting for payment
    PAYMENT_VERIFIED = "payment_verified"  # Payment captured, waiting for restaurant
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    REJECTED = "rejected"  # Restaurant rejected the order
    CANCELLED = "cancelled"  # Customer cancelled the order
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUND_INITIATED = "refund_initiated"


class PaymentMethod(str, Enum):
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"
    CASH_ON_DELIVERY = "cash_on_delivery"


class UpdatedBy(str, Enum):
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    DELIVERY = "delivery"
    SYSTEM = "system"


# Entering any of these stamps completed_at
COMPLETED_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED)


def generate_order_number() -> str:
    return f"ORD{int(time.time() * 1000)}{uuid.uuid4().hex[:9].upper()}"


class Order(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order_number = fields.CharField(max_length=32, unique=True, default=generate_order_number)
    idempotency_key = fields.CharField(max_length=100, unique=True)

    customer = fields.ForeignKeyField("models.Customer", related_name="orders")
    restaurant = fields.ForeignKeyField("models.Restaurant", related_name="orders")
    customer_name = fields.CharField(max_length=255)
    customer_phone = fields.CharField(max_length=32, null=True)
    customer_email = fields.CharField(max_length=255, null=True)

    # Pricing, integer minor units. Frozen at creation.
    subtotal = fields.IntField()
    delivery_fee = fields.IntField(default=0)
    taxes = fields.IntField(default=0)
    platform_fee = fields.IntField(default=0)
    discount_amount = fields.IntField(default=0)
    total_price = fields.IntField()
    currency = fields.CharField(max_length=3, default="INR")

    delivery_address = fields.JSONField()
    special_instructions = fields.TextField(null=True)
    contactless_delivery = fields.BooleanField(default=False)

    # Payment
    payment_id = fields.CharField(max_length=64, null=True)
    transaction_id = fields.CharField(max_length=64, null=True)
    gateway_payment_id = fields.CharField(max_length=64, null=True)
    payment_method = fields.CharEnumField(PaymentMethod, default=PaymentMethod.CARD)
    payment_status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.PENDING)
    payment_details = fields.JSONField(default=dict)

    status = fields.CharEnumField(OrderStatus, default=OrderStatus.PENDING)

    # Restaurant processing and delivery tracking
    estimated_preparation_time = fields.IntField(default=30)
    actual_pickup_time = fields.DatetimeField(null=True)
    actual_delivery_time = fields.DatetimeField(null=True)
    rejection_reason = fields.CharField(max_length=200, null=True)
    cancellation_reason = fields.CharField(max_length=200, null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)
    confirmed_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)

    class Meta:
        table = "orders"
        indexes = [
            ("restaurant_id", "status"),         # Restaurant order queues
            ("customer_id", "created_at"),       # Customer order history
            ("payment_id",),                     # Webhook lookups
            ("transaction_id",),
            ("gateway_payment_id",),
            ("payment_status", "status"),
            ("status", "created_at"),            # Composite: status with time
        ]

    async def transition_to(
        self,
        new_status: OrderStatus,
        *,
        updated_by: UpdatedBy,
        note: Optional[str] = None,
        performed_by: Optional[str] = None,
        using_db: Optional[BaseDBAsyncClient] = None,
        **changes: Any,
    ) -> None:
        """
        Moves the order to `new_status` with a compare-and-swap on the current
        status, then appends one timeline entry and one audit entry on the same
        connection. A concurrent writer that changed the status first makes
        this call fail with InvalidStatusTransition.
        """
        now = timezone.now()
        old_status = self.status
        values: Dict[str, Any] = dict(changes)
        values["status"] = new_status
        values["updated_at"] = now
        if new_status == OrderStatus.CONFIRMED and self.confirmed_at is None:
            values["confirmed_at"] = now
        if new_status in COMPLETED_STATUSES and self.completed_at is None:
            values["completed_at"] = now

        updated = await Order.filter(id=self.id, status=old_status).using_db(using_db).update(**values)
        if not updated:
            current = await Order.get_or_none(id=self.id).using_db(using_db)
            current_status = current.status if current else old_status
            raise InvalidStatusTransition(OrderStatus(current_status).value, OrderStatus(new_status).value)

        for field_name, value in values.items():
            setattr(self, field_name, value)

        await OrderTimelineEntry.create(
            order_id=self.id,
            status=new_status,
            note=note,
            updated_by=updated_by,
            using_db=using_db,
        )
        await self.add_audit_log(
            "status_change",
            performed_by or UpdatedBy(updated_by).value,
            {"from": OrderStatus(old_status).value, "to": OrderStatus(new_status).value, "note": note},
            using_db=using_db,
        )

    async def set_payment_status(
        self,
        new_status: PaymentStatus,
        *,
        expected: Optional[Iterable[PaymentStatus]] = None,
        using_db: Optional[BaseDBAsyncClient] = None,
        **changes: Any,
    ) -> bool:
        """
        Conditionally writes the payment status. With `expected` the write only
        happens while the stored status is one of them; returns False when
        another writer got there first.
        """
        values: Dict[str, Any] = dict(changes)
        values["payment_status"] = new_status
        values["updated_at"] = timezone.now()

        query = Order.filter(id=self.id)
        if expected is not None:
            query = query.filter(payment_status__in=list(expected))
        updated = await query.using_db(using_db).update(**values)
        if not updated:
            return False

        for field_name, value in values.items():
            setattr(self, field_name, value)
        return True

    async def add_audit_log(
        self,
        action: str,
        performed_by: str,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        using_db: Optional[BaseDBAsyncClient] = None,
    ) -> "OrderAuditLog":
        return await OrderAuditLog.create(
            order_id=self.id,
            action=action,
            performed_by=str(performed_by),
            details=details or {},
            ip_address=ip_address,
            using_db=using_db,
        )


class OrderItem(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order = fields.ForeignKeyField("models.Order", related_name="items")
    food_item = fields.ForeignKeyField("models.FoodItem", related_name="order_items")
    position = fields.IntField()
    # Snapshots taken at creation, never re-derived from the catalog
    name = fields.CharField(max_length=100)
    quantity = fields.IntField()
    unit_price = fields.IntField()
    customizations = fields.JSONField(default=list)
    special_instructions = fields.TextField(null=True)
    preparation_time = fields.IntField(default=20)
    line_total = fields.IntField()

    class Meta:
        table = "order_items"
        ordering = ["position"]
        indexes = [
            ("order_id",),              # Order line items
            ("food_item_id",),          # Item popularity
        ]


class OrderTimelineEntry(models.Model):
    """Append-only status history, one row per status change."""
    id = fields.BigIntField(primary_key=True)
    order = fields.ForeignKeyField("models.Order", related_name="timeline")
    status = fields.CharEnumField(OrderStatus)
    timestamp = fields.DatetimeField(auto_now_add=True)
    note = fields.TextField(null=True)
    updated_by = fields.CharEnumField(UpdatedBy)

    class Meta:
        table = "order_timeline"
        ordering = ["timestamp", "id"]


class OrderAuditLog(models.Model):
    """Append-only record of every state-affecting action on an order."""
    id = fields.BigIntField(primary_key=True)
    order = fields.ForeignKeyField("models.Order", related_name="audit_logs")
    action = fields.CharField(max_length=64)
    performed_by = fields.CharField(max_length=64)
    timestamp = fields.DatetimeField(auto_now_add=True)
    details = fields.JSONField(default=dict)
    ip_address = fields.CharField(max_length=45, null=True)

    class Meta:
        table = "order_audit_logs"
        ordering = ["timestamp", "id"]
