import pytest
from uuid import uuid4

from foodorder.core.errors import InvalidOrderStatus, InvalidStatusTransition, OrderNotFound, ValidationError
from foodorder.core.principal import RestaurantPrincipal, UserPrincipal
from foodorder.events import types as events
from foodorder.models.catalog import FoodItem
from foodorder.models.order import Order, OrderAuditLog, OrderStatus, OrderTimelineEntry, PaymentStatus, UpdatedBy
from foodorder.services.order_status import can_transition


def test_forward_table():
    assert can_transition(OrderStatus.CONFIRMED, OrderStatus.PREPARING)
    assert can_transition(OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED)
    assert not can_transition(OrderStatus.CONFIRMED, OrderStatus.DELIVERED)
    assert not can_transition(OrderStatus.PREPARING, OrderStatus.CONFIRMED)
    assert not can_transition(OrderStatus.DELIVERED, OrderStatus.PREPARING)
    assert not can_transition(OrderStatus.PENDING, OrderStatus.PAYMENT_VERIFIED)


@pytest.mark.asyncio
async def test_confirm_then_walk_to_delivered(status_service, dispatcher, paid_order, restaurant_principal):
    order = await status_service.confirm_order(paid_order.id, restaurant_principal, note="On it")
    assert order.status == OrderStatus.CONFIRMED
    assert order.confirmed_at is not None
    confirmed_at = (await Order.get(id=paid_order.id)).confirmed_at

    for step in (OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED):
        order = await status_service.update_status(paid_order.id, restaurant_principal, step)

    stored = await Order.get(id=paid_order.id)
    assert stored.status == OrderStatus.DELIVERED
    assert stored.confirmed_at == confirmed_at
    assert stored.actual_pickup_time is not None
    assert stored.actual_delivery_time is not None
    assert stored.completed_at is not None

    timeline = await OrderTimelineEntry.filter(order_id=paid_order.id).order_by("timestamp", "id")
    assert [t.status for t in timeline] == [
        OrderStatus.PENDING,
        OrderStatus.PAYMENT_VERIFIED,
        OrderStatus.CONFIRMED,
        OrderStatus.PREPARING,
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
    ]
    status_changes = await OrderAuditLog.filter(order_id=paid_order.id, action="status_change").count()
    assert status_changes == 6

    assert events.ORDER_DELIVERED in dispatcher.event_types()
    assert [n["type"] for n in dispatcher.notifications if n["audience"] == "customer"][-1] == "order_delivered"


@pytest.mark.asyncio
async def test_illegal_transition_reports_current_and_requested(status_service, paid_order, restaurant_principal):
    with pytest.raises(InvalidStatusTransition) as excinfo:
        await status_service.update_status(paid_order.id, restaurant_principal, OrderStatus.PREPARING)

    assert excinfo.value.details == {"current_status": "payment_verified", "requested_status": "preparing"}
    assert (await Order.get(id=paid_order.id)).status == OrderStatus.PAYMENT_VERIFIED


@pytest.mark.asyncio
async def test_unknown_status_is_a_validation_error(status_service, paid_order, restaurant_principal):
    with pytest.raises(ValidationError):
        await status_service.update_status(paid_order.id, restaurant_principal, "teleported")


@pytest.mark.asyncio
async def test_stale_writer_loses_compare_and_swap(paid_order):
    first = await Order.get(id=paid_order.id)
    second = await Order.get(id=paid_order.id)

    await first.transition_to(OrderStatus.CONFIRMED, updated_by=UpdatedBy.RESTAURANT)
    with pytest.raises(InvalidStatusTransition) as excinfo:
        await second.transition_to(OrderStatus.REJECTED, updated_by=UpdatedBy.RESTAURANT)

    assert excinfo.value.details["current_status"] == "confirmed"
    assert (await Order.get(id=paid_order.id)).status == OrderStatus.CONFIRMED
    assert await OrderTimelineEntry.filter(order_id=paid_order.id, status=OrderStatus.REJECTED).count() == 0


@pytest.mark.asyncio
async def test_confirm_requires_verified_payment(status_service, placed_order, restaurant_principal):
    with pytest.raises(InvalidOrderStatus):
        await status_service.confirm_order(placed_order.id, restaurant_principal)


@pytest.mark.asyncio
async def test_restaurant_cannot_touch_other_restaurants_orders(status_service, paid_order):
    with pytest.raises(OrderNotFound):
        await status_service.confirm_order(paid_order.id, RestaurantPrincipal(id=uuid4()))


@pytest.mark.asyncio
async def test_reject_restores_stock_and_refunds(status_service, gateway, dispatcher, paid_order, restaurant_principal, food_item):
    assert (await FoodItem.get(id=food_item.id)).stock == 2

    order = await status_service.reject_order(paid_order.id, restaurant_principal, "Kitchen closed early")

    assert order.status == OrderStatus.REJECTED
    assert order.rejection_reason == "Kitchen closed early"
    item = await FoodItem.get(id=food_item.id)
    assert (item.stock, item.sold_count) == (3, 0)

    assert gateway.refunds == [{
        "id": "rfnd_fake1",
        "payment_id": "pay_0001",
        "amount": 18050,
        "status": "pending",
        "reason": "Order rejected: Kitchen closed early",
    }]
    stored = await Order.get(id=paid_order.id)
    assert stored.payment_status == PaymentStatus.REFUNDED
    assert stored.payment_details["refund_id"] == "rfnd_fake1"
    assert events.ORDER_REJECTED in dispatcher.event_types()
    assert events.PAYMENT_REFUND_INITIATED in dispatcher.event_types()


@pytest.mark.asyncio
async def test_reject_after_confirm_restores_stock_and_refunds(status_service, gateway, paid_order, restaurant_principal, food_item):
    await status_service.confirm_order(paid_order.id, restaurant_principal)
    confirmed_at = (await Order.get(id=paid_order.id)).confirmed_at
    assert confirmed_at is not None

    order = await status_service.reject_order(paid_order.id, restaurant_principal, "Rider unavailable tonight")
    assert order.status == OrderStatus.REJECTED

    item = await FoodItem.get(id=food_item.id)
    assert (item.stock, item.sold_count) == (3, 0)
    assert [(r["payment_id"], r["amount"]) for r in gateway.refunds] == [("pay_0001", 18050)]

    stored = await Order.get(id=paid_order.id)
    assert stored.payment_status == PaymentStatus.REFUNDED
    assert stored.confirmed_at == confirmed_at
    timeline = await OrderTimelineEntry.filter(order_id=paid_order.id)
    assert [t.status for t in timeline] == [
        OrderStatus.PENDING,
        OrderStatus.PAYMENT_VERIFIED,
        OrderStatus.CONFIRMED,
        OrderStatus.REJECTED,
    ]


@pytest.mark.asyncio
async def test_history_keeps_write_order_on_equal_timestamps(status_service, paid_order, restaurant_principal):
    await status_service.reject_order(paid_order.id, restaurant_principal, "Kitchen closed early")

    # Same-transaction writes may share a timestamp; insertion order must still hold
    written = [log.action for log in await OrderAuditLog.filter(order_id=paid_order.id).order_by("id")]
    stamp = (await Order.get(id=paid_order.id)).created_at
    await OrderAuditLog.filter(order_id=paid_order.id).update(timestamp=stamp)
    await OrderTimelineEntry.filter(order_id=paid_order.id).update(timestamp=stamp)

    assert [log.action for log in await OrderAuditLog.filter(order_id=paid_order.id)] == written
    assert written[-2:] == ["status_change", "refund_initiated"]
    timeline = await OrderTimelineEntry.filter(order_id=paid_order.id)
    assert [t.status for t in timeline] == [OrderStatus.PENDING, OrderStatus.PAYMENT_VERIFIED, OrderStatus.REJECTED]


@pytest.mark.asyncio
async def test_failed_refund_leaves_payment_for_reconciliation(status_service, gateway, paid_order, restaurant_principal):
    gateway.fail_refund = True

    await status_service.reject_order(paid_order.id, restaurant_principal, "Out of ingredients")

    stored = await Order.get(id=paid_order.id)
    assert stored.status == OrderStatus.REJECTED
    assert stored.payment_status == PaymentStatus.COMPLETED
    assert await OrderAuditLog.filter(order_id=paid_order.id, action="refund_failed").exists()


@pytest.mark.asyncio
async def test_reject_not_allowed_once_preparing(status_service, paid_order, restaurant_principal):
    await status_service.confirm_order(paid_order.id, restaurant_principal)
    await status_service.update_status(paid_order.id, restaurant_principal, OrderStatus.PREPARING)

    with pytest.raises(InvalidOrderStatus):
        await status_service.reject_order(paid_order.id, restaurant_principal, "Changed my mind")


@pytest.mark.asyncio
async def test_customer_cancel_of_unpaid_order(status_service, gateway, dispatcher, placed_order, user, food_item):
    order = await status_service.cancel_order(placed_order.id, user, "Ordered by mistake")

    assert order.status == OrderStatus.CANCELLED
    assert order.completed_at is not None
    assert (await FoodItem.get(id=food_item.id)).stock == 3
    # Nothing was captured, so nothing to refund
    assert gateway.refunds == []
    assert dispatcher.notifications[-1]["audience"] == "restaurant"


@pytest.mark.asyncio
async def test_customer_cancel_refunds_paid_order(status_service, gateway, paid_order, user):
    await status_service.cancel_order(paid_order.id, user)

    assert len(gateway.refunds) == 1
    assert (await Order.get(id=paid_order.id)).payment_status == PaymentStatus.REFUNDED


@pytest.mark.asyncio
async def test_cancel_rules(status_service, paid_order, restaurant_principal, user):
    with pytest.raises(OrderNotFound):
        await status_service.cancel_order(paid_order.id, UserPrincipal(id=uuid4()))

    await status_service.confirm_order(paid_order.id, restaurant_principal)
    for step in (OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP):
        await status_service.update_status(paid_order.id, restaurant_principal, step)

    with pytest.raises(InvalidOrderStatus):
        await status_service.cancel_order(paid_order.id, user)
