"""Restaurant and customer driven order status changes."""

import logging
from typing import Dict, Optional, Set
from uuid import UUID

from tortoise import timezone
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.transactions import in_transaction

from foodorder.core.errors import InvalidOrderStatus, InvalidStatusTransition, OrderNotFound, ValidationError
from foodorder.core.principal import RestaurantPrincipal, UserPrincipal
from foodorder.events import types as events
from foodorder.events.dispatcher import EventDispatcher, order_payload
from foodorder.models.order import Order, OrderItem, OrderStatus, PaymentStatus, UpdatedBy
from foodorder.services.catalog import CatalogAccessor
from foodorder.services.gateway import PaymentGateway

log = logging.getLogger(__name__)

# The only moves a restaurant may make through update_status
RESTAURANT_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.CONFIRMED: {OrderStatus.PREPARING},
    OrderStatus.PREPARING: {OrderStatus.READY_FOR_PICKUP},
    OrderStatus.READY_FOR_PICKUP: {OrderStatus.OUT_FOR_DELIVERY},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED},
}

REJECTABLE_STATUSES = {OrderStatus.PAYMENT_VERIFIED, OrderStatus.CONFIRMED}
CANCELLABLE_STATUSES = {
    OrderStatus.PENDING,
    OrderStatus.PAYMENT_VERIFIED,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
}

STATUS_EVENTS = {
    OrderStatus.PREPARING: events.ORDER_PREPARING,
    OrderStatus.READY_FOR_PICKUP: events.ORDER_READY_FOR_PICKUP,
    OrderStatus.OUT_FOR_DELIVERY: events.ORDER_OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED: events.ORDER_DELIVERED,
}

STATUS_NOTIFICATIONS = {
    OrderStatus.PREPARING: "order_preparing",
    OrderStatus.READY_FOR_PICKUP: "order_ready",
    OrderStatus.OUT_FOR_DELIVERY: "order_out_for_delivery",
    OrderStatus.DELIVERED: "order_delivered",
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Return whether a restaurant may move an order from current to new status."""
    return new in RESTAURANT_TRANSITIONS.get(OrderStatus(current), set())


class OrderStatusService:
    def __init__(
        self,
        gateway: PaymentGateway,
        dispatcher: EventDispatcher,
        catalog: Optional[CatalogAccessor] = None,
    ):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.catalog = catalog or CatalogAccessor()

    @staticmethod
    async def _restaurant_order(order_id: UUID, restaurant_id: UUID, conn: BaseDBAsyncClient) -> Order:
        order = await Order.get_or_none(id=order_id, restaurant_id=restaurant_id).using_db(conn)
        if not order:
            raise OrderNotFound()
        return order

    async def update_status(
        self,
        order_id: UUID,
        restaurant: RestaurantPrincipal,
        new_status: OrderStatus,
        note: Optional[str] = None,
    ) -> Order:
        """
        Moves an order one step along confirmed -> preparing -> ready_for_pickup
        -> out_for_delivery -> delivered. Anything else is rejected with the
        current and requested status.
        """
        try:
            new_status = OrderStatus(new_status)
        except ValueError as e:
            raise ValidationError(f"Unknown order status: {new_status}") from e

        async with in_transaction() as conn:
            order = await self._restaurant_order(order_id, restaurant.id, conn)
            if not can_transition(order.status, new_status):
                raise InvalidStatusTransition(OrderStatus(order.status).value, new_status.value)

            changes = {}
            if new_status == OrderStatus.READY_FOR_PICKUP:
                changes["actual_pickup_time"] = timezone.now()
            elif new_status == OrderStatus.DELIVERED:
                changes["actual_delivery_time"] = timezone.now()

            await order.transition_to(
                new_status,
                updated_by=UpdatedBy.RESTAURANT,
                note=note,
                performed_by=str(restaurant.id),
                using_db=conn,
                **changes,
            )
            await self.dispatcher.emit(
                STATUS_EVENTS[new_status],
                order.id,
                order_payload(order, note=note, updated_by=str(restaurant.id)),
                conn=conn,
            )
            await self.dispatcher.notify(order, STATUS_NOTIFICATIONS[new_status], "customer", conn=conn)

        log.info(f"Order {order.id} moved to {new_status.value} by restaurant {restaurant.id}.")
        return order

    async def confirm_order(self, order_id: UUID, restaurant: RestaurantPrincipal, note: Optional[str] = None) -> Order:
        async with in_transaction() as conn:
            order = await self._restaurant_order(order_id, restaurant.id, conn)
            if order.status != OrderStatus.PAYMENT_VERIFIED:
                raise InvalidOrderStatus(
                    f"Order cannot be confirmed. Current status: {OrderStatus(order.status).value}",
                    current_status=OrderStatus(order.status).value,
                )

            await order.transition_to(
                OrderStatus.CONFIRMED,
                updated_by=UpdatedBy.RESTAURANT,
                note=note,
                performed_by=str(restaurant.id),
                using_db=conn,
            )
            await self.dispatcher.emit(events.ORDER_CONFIRMED, order.id, order_payload(order, note=note), conn=conn)
            await self.dispatcher.notify(order, "order_confirmed", "customer", conn=conn)

        log.info(f"Order {order.id} confirmed by restaurant {restaurant.id}.")
        return order

    async def reject_order(self, order_id: UUID, restaurant: RestaurantPrincipal, reason: str) -> Order:
        """
        Rejects a paid order, puts its stock back and refunds the customer.
        The refund runs after the rejection commits; a failed refund leaves
        payment_status untouched for later reconciliation.
        """
        async with in_transaction() as conn:
            order = await self._restaurant_order(order_id, restaurant.id, conn)
            if order.status not in REJECTABLE_STATUSES:
                raise InvalidOrderStatus(
                    f"Order cannot be rejected. Current status: {OrderStatus(order.status).value}",
                    current_status=OrderStatus(order.status).value,
                )

            await order.transition_to(
                OrderStatus.REJECTED,
                updated_by=UpdatedBy.RESTAURANT,
                note=reason,
                performed_by=str(restaurant.id),
                using_db=conn,
                rejection_reason=reason,
            )
            await self._restore_stock(order, conn)
            await self.dispatcher.emit(
                events.ORDER_REJECTED,
                order.id,
                order_payload(order, rejected_by=str(restaurant.id), reason=reason),
                conn=conn,
            )
            await self.dispatcher.notify(order, "order_rejected", "customer", conn=conn)

        log.info(f"Order {order.id} rejected by restaurant {restaurant.id}: {reason}")
        await self._refund_closed_order(order, f"Order rejected: {reason}", str(restaurant.id))
        return order

    async def cancel_order(self, order_id: UUID, customer: UserPrincipal, reason: Optional[str] = None) -> Order:
        async with in_transaction() as conn:
            order = await Order.get_or_none(id=order_id, customer_id=customer.id).using_db(conn)
            if not order:
                raise OrderNotFound()
            if order.status not in CANCELLABLE_STATUSES:
                raise InvalidOrderStatus(
                    f"Order cannot be cancelled. Current status: {OrderStatus(order.status).value}",
                    current_status=OrderStatus(order.status).value,
                )

            await order.transition_to(
                OrderStatus.CANCELLED,
                updated_by=UpdatedBy.CUSTOMER,
                note=reason,
                performed_by=str(customer.id),
                using_db=conn,
                cancellation_reason=reason,
            )
            await self._restore_stock(order, conn)
            await self.dispatcher.emit(events.ORDER_CANCELLED, order.id, order_payload(order, reason=reason), conn=conn)
            await self.dispatcher.notify(order, "order_cancelled", "restaurant", conn=conn)

        log.info(f"Order {order.id} cancelled by customer {customer.id}.")
        await self._refund_closed_order(order, f"Order cancelled: {reason or 'by customer'}", str(customer.id))
        return order

    async def _restore_stock(self, order: Order, conn: BaseDBAsyncClient) -> None:
        items = await OrderItem.filter(order_id=order.id).using_db(conn)
        for item in items:
            await self.catalog.restore_stock(item.food_item_id, item.quantity, conn)

    async def _refund_closed_order(self, order: Order, reason: str, performed_by: str) -> None:
        await refund_closed_order(order, self.gateway, self.dispatcher, reason, performed_by)


async def refund_closed_order(
    order: Order,
    gateway: PaymentGateway,
    dispatcher: EventDispatcher,
    reason: str,
    performed_by: str,
) -> None:
    """
    Refunds the full amount of a completed payment on an order that will not
    be fulfilled. On gateway failure the payment stays completed and a
    refund_failed audit entry is left for reconciliation.
    """
    if not order.payment_id or order.payment_status != PaymentStatus.COMPLETED:
        return

    payment_ref = order.gateway_payment_id or order.payment_id
    result = await gateway.initiate_refund(payment_ref, order.total_price, reason)
    if not result.success:
        log.error(
            f"Refund for order {order.id} failed ({result.error}); "
            f"payment status left as {PaymentStatus(order.payment_status).value} for reconciliation."
        )
        await order.add_audit_log(
            "refund_failed",
            performed_by,
            {"amount": order.total_price, "reason": reason, "error": result.error},
        )
        return

    refund = result.data.get("refund") or {}
    async with in_transaction() as conn:
        details = dict(order.payment_details or {})
        details.update({
            "refund_id": refund.get("id"),
            "refund_amount": order.total_price,
            "refund_requested_at": timezone.now().isoformat(),
        })
        updated = await order.set_payment_status(
            PaymentStatus.REFUNDED,
            expected=[PaymentStatus.COMPLETED],
            using_db=conn,
            payment_details=details,
        )
        if not updated:
            log.warning(f"Payment status of order {order.id} changed while refunding; refund {refund.get('id')} still issued.")
        await order.add_audit_log(
            "refund_initiated",
            performed_by,
            {"refund_id": refund.get("id"), "amount": order.total_price, "reason": reason},
            using_db=conn,
        )
        await dispatcher.emit(
            events.PAYMENT_REFUND_INITIATED,
            order.id,
            {
                "refund_id": refund.get("id"),
                "payment_id": payment_ref,
                "order_id": str(order.id),
                "amount": order.total_price,
                "reason": reason,
            },
            aggregate_type="payment",
            conn=conn,
        )
