import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from foodorder.core.config import CURRENCY, DEFAULT_PREPARATION_TIME
from foodorder.core.errors import (
    AccessDenied,
    CustomerNotFound,
    IdempotencyKeyReused,
    InsufficientStock,
    ItemUnavailable,
    MinimumOrderNotMet,
    MixedRestaurantItems,
    OrderNotFound,
    PaymentIntentFailed,
    RestaurantUnavailable,
    ValidationError,
)
from foodorder.core.principal import Principal, UserPrincipal
from foodorder.events import types as events
from foodorder.events.dispatcher import EventDispatcher, order_payload
from foodorder.models.order import Order, OrderItem, OrderStatus, OrderTimelineEntry, PaymentMethod, UpdatedBy
from foodorder.services.catalog import CatalogAccessor
from foodorder.services.gateway import PaymentGateway
from foodorder.services.pricing import PricingEngine, estimated_preparation_time

log = logging.getLogger(__name__)

IDEMPOTENCY_KEY_MIN_LENGTH = 10
IDEMPOTENCY_KEY_MAX_LENGTH = 100
SORTABLE_FIELDS = {"created_at", "updated_at", "total_price", "status"}


@dataclass
class OrderPlacement:
    order: Order
    payment_intent: Optional[Dict[str, Any]]
    created: bool


def _pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    return {
        "current_page": page,
        "total_pages": (total + limit - 1) // limit,
        "total_orders": total,
        "has_next_page": page * limit < total,
        "has_prev_page": page > 1,
    }


class OrderService:
    """Creates orders and serves order reads for customers and restaurants."""

    def __init__(
        self,
        gateway: PaymentGateway,
        dispatcher: EventDispatcher,
        catalog: Optional[CatalogAccessor] = None,
        pricing: Optional[PricingEngine] = None,
        currency: str = CURRENCY,
    ):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.catalog = catalog or CatalogAccessor()
        self.pricing = pricing or PricingEngine(
            tax_fn=gateway.calculate_taxes,
            platform_fee_fn=gateway.calculate_platform_fee,
        )
        self.currency = currency

    @staticmethod
    def _validate_request(items: List[Dict[str, Any]], idempotency_key: str) -> None:
        if not idempotency_key or not (
            IDEMPOTENCY_KEY_MIN_LENGTH <= len(idempotency_key.strip()) <= IDEMPOTENCY_KEY_MAX_LENGTH
        ):
            raise ValidationError("Idempotency key must be between 10 and 100 characters")
        if not items:
            raise ValidationError("Order must contain at least one item")
        for item in items:
            if int(item.get("quantity") or 0) < 1:
                raise ValidationError("Quantity must be at least 1")

    async def create_order(
        self,
        customer_id: UUID,
        restaurant_id: UUID,
        items: List[Dict[str, Any]],
        delivery_address: Dict[str, Any],
        idempotency_key: str,
        payment_method: PaymentMethod = PaymentMethod.CARD,
        special_instructions: Optional[str] = None,
        contactless_delivery: bool = False,
        ip_address: Optional[str] = None,
    ) -> OrderPlacement:
        """
        Validates items against the catalog, reserves stock, prices the order,
        persists it and opens a payment intent, all in one transaction. A
        retried request with the same idempotency key gets the first order back.
        """
        self._validate_request(items, idempotency_key)
        idempotency_key = idempotency_key.strip()

        existing = await Order.get_or_none(idempotency_key=idempotency_key)
        if existing:
            return self._replay(existing, customer_id)

        try:
            order, intent = await self._place_order(
                customer_id=customer_id,
                restaurant_id=restaurant_id,
                items=items,
                delivery_address=delivery_address,
                idempotency_key=idempotency_key,
                payment_method=PaymentMethod(payment_method),
                special_instructions=special_instructions,
                contactless_delivery=contactless_delivery,
                ip_address=ip_address,
            )
        except IntegrityError:
            # A concurrent request with the same key committed first
            existing = await Order.get_or_none(idempotency_key=idempotency_key)
            if existing is None:
                raise
            return self._replay(existing, customer_id)

        log.info(f"Order {order.order_number} created for customer {customer_id}, total {order.total_price}.")

        try:
            await self.dispatcher.emit(
                events.ORDER_CREATED,
                order.id,
                order_payload(
                    order,
                    items=[{"food_item_id": str(i["food_item_id"]), "quantity": int(i["quantity"])} for i in items],
                    payment_method=order.payment_method.value,
                ),
            )
        except Exception as e:
            # The order is committed; the event is best-effort
            log.error(f"Failed to publish {events.ORDER_CREATED} for order {order.id}: {e}")

        return OrderPlacement(order=order, payment_intent=intent, created=True)

    @staticmethod
    def _replay(existing: Order, customer_id: UUID) -> OrderPlacement:
        if str(existing.customer_id) != str(customer_id):
            raise IdempotencyKeyReused()
        log.info(f"Idempotent replay: returning existing order {existing.id} for key {existing.idempotency_key}.")
        intent = (existing.payment_details or {}).get("gateway_response")
        return OrderPlacement(order=existing, payment_intent=intent, created=False)

    async def _place_order(
        self,
        customer_id: UUID,
        restaurant_id: UUID,
        items: List[Dict[str, Any]],
        delivery_address: Dict[str, Any],
        idempotency_key: str,
        payment_method: PaymentMethod,
        special_instructions: Optional[str],
        contactless_delivery: bool,
        ip_address: Optional[str],
    ) -> Tuple[Order, Dict[str, Any]]:
        # Any exception raised inside this block rolls back the stock
        # decrements and the order rows together.
        async with in_transaction() as conn:
            restaurant = await self.catalog.get_restaurant(restaurant_id, conn)
            if not restaurant or not restaurant.is_active or not restaurant.is_verified:
                raise RestaurantUnavailable()

            customer = await self.catalog.get_customer(customer_id, conn)
            if not customer:
                raise CustomerNotFound()

            lines = []
            for position, item in enumerate(items):
                food_item_id = item["food_item_id"]
                quantity = int(item["quantity"])

                food_item = await self.catalog.get_food_item(food_item_id, conn)
                if not food_item or not food_item.is_available:
                    raise ItemUnavailable(f"Food item {food_item_id} not available", food_item_id=str(food_item_id))

                if str(food_item.restaurant_id) != str(restaurant.id):
                    raise MixedRestaurantItems(food_item_id=str(food_item_id))

                if not self.catalog.is_in_stock(food_item, quantity):
                    raise InsufficientStock(
                        f"Insufficient stock for {food_item.name}",
                        food_item_id=str(food_item_id),
                        requested=quantity,
                        available=food_item.stock,
                    )

                customizations = [dict(c) for c in item.get("customizations") or []]
                try:
                    line_total = self.pricing.line_total(food_item.price, customizations, quantity)
                except ValueError as e:
                    raise ValidationError(str(e)) from e

                if not await self.catalog.decrement_stock(food_item, quantity, conn):
                    raise InsufficientStock(
                        f"Insufficient stock for {food_item.name}",
                        food_item_id=str(food_item_id),
                        requested=quantity,
                    )

                lines.append({
                    "food_item_id": food_item.id,
                    "position": position,
                    "name": food_item.name,
                    "quantity": quantity,
                    "unit_price": food_item.price,
                    "customizations": customizations,
                    "special_instructions": item.get("special_instructions"),
                    "preparation_time": food_item.preparation_time,
                    "line_total": line_total,
                })

            subtotal = self.pricing.subtotal(line["line_total"] for line in lines)
            if subtotal < restaurant.minimum_order:
                raise MinimumOrderNotMet(
                    f"Minimum order amount is {restaurant.minimum_order}",
                    minimum_order=restaurant.minimum_order,
                    subtotal=subtotal,
                )

            breakdown = self.pricing.quote(subtotal, restaurant.delivery_fee)

            order = await Order.create(
                idempotency_key=idempotency_key,
                customer_id=customer.id,
                restaurant_id=restaurant.id,
                customer_name=customer.name,
                customer_phone=customer.phone,
                customer_email=customer.email,
                subtotal=breakdown.subtotal,
                delivery_fee=breakdown.delivery_fee,
                taxes=breakdown.taxes,
                platform_fee=breakdown.platform_fee,
                discount_amount=breakdown.discount_amount,
                total_price=breakdown.total_price,
                currency=self.currency,
                delivery_address=delivery_address,
                special_instructions=special_instructions,
                contactless_delivery=contactless_delivery,
                payment_method=payment_method,
                status=OrderStatus.PENDING,
                estimated_preparation_time=estimated_preparation_time(
                    (line["preparation_time"] for line in lines),
                    restaurant.default_preparation_time or DEFAULT_PREPARATION_TIME,
                ),
                using_db=conn,
            )
            for line in lines:
                await OrderItem.create(order=order, using_db=conn, **line)
            await OrderTimelineEntry.create(
                order=order,
                status=OrderStatus.PENDING,
                note="Order placed",
                updated_by=UpdatedBy.CUSTOMER,
                using_db=conn,
            )

            await order.add_audit_log(
                "order_created",
                str(customer.id),
                {
                    "items": len(lines),
                    "total_price": breakdown.total_price,
                    "payment_method": payment_method.value,
                },
                ip_address=ip_address,
                using_db=conn,
            )

            result = await self.gateway.create_payment_intent(
                breakdown.total_price,
                self.currency,
                str(order.id),
                {"name": customer.name, "email": customer.email, "phone": customer.phone},
            )
            if not result.success:
                log.error(f"Aborting order for key {idempotency_key}: payment intent failed ({result.error}).")
                raise PaymentIntentFailed(gateway_error=result.error)

            intent = result.data["payment_intent"]
            order.payment_id = intent["id"]
            order.transaction_id = intent["provider_order_id"]
            order.payment_details = {
                "transaction_id": intent["provider_order_id"],
                "gateway": "razorpay",
                "gateway_response": intent,
            }
            await order.save(
                update_fields=["payment_id", "transaction_id", "payment_details", "updated_at"],
                using_db=conn,
            )

        return order, intent

    async def get_order(self, order_id: UUID, principal: Principal) -> Order:
        """Fetches an order with items and timeline; only its customer or restaurant may read it."""
        order = await Order.get_or_none(id=order_id).prefetch_related("items", "timeline")
        if not order:
            raise OrderNotFound()
        owner_id = order.customer_id if isinstance(principal, UserPrincipal) else order.restaurant_id
        if str(owner_id) != str(principal.id):
            raise AccessDenied()
        return order

    async def list_customer_orders(
        self, customer_id: UUID, status: Optional[OrderStatus] = None, page: int = 1, limit: int = 20
    ) -> Tuple[List[Order], Dict[str, Any]]:
        query = Order.filter(customer_id=customer_id)
        if status:
            query = query.filter(status=status)
        total = await query.count()
        orders = await query.order_by("-created_at").offset((page - 1) * limit).limit(limit).prefetch_related("items")
        return orders, _pagination(page, limit, total)

    async def list_restaurant_orders(
        self,
        restaurant_id: UUID,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[Order], Dict[str, Any]]:
        query = Order.filter(restaurant_id=restaurant_id)
        if status:
            # "pending" for a restaurant means paid orders waiting on it
            if status == OrderStatus.PENDING:
                status = OrderStatus.PAYMENT_VERIFIED
            query = query.filter(status=status)
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by {sort_by}")
        ordering = f"-{sort_by}" if sort_order == "desc" else sort_by
        total = await query.count()
        orders = await query.order_by(ordering).offset((page - 1) * limit).limit(limit).prefetch_related("items")
        return orders, _pagination(page, limit, total)

    async def latest_pending_order(self, restaurant_id: UUID) -> Optional[Order]:
        """Newest paid order still waiting on the restaurant, if any."""
        orders, _ = await self.list_restaurant_orders(restaurant_id, OrderStatus.PAYMENT_VERIFIED, limit=1)
        return orders[0] if orders else None
