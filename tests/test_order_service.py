import pytest
from uuid import uuid4

from foodorder.core.errors import (
    AccessDenied,
    CustomerNotFound,
    IdempotencyKeyReused,
    InsufficientStock,
    ItemUnavailable,
    MinimumOrderNotMet,
    MixedRestaurantItems,
    PaymentIntentFailed,
    RestaurantUnavailable,
    ValidationError,
)
from foodorder.core.principal import RestaurantPrincipal, UserPrincipal
from foodorder.events import types as events
from foodorder.models.catalog import FoodItem, Restaurant
from foodorder.models.customer import Customer
from foodorder.models.order import Order, OrderAuditLog, OrderItem, OrderStatus, PaymentStatus
from foodorder.services.order_service import OrderService
from foodorder.testing.testing_mocks import ADDRESS, RecordingDispatcher


async def _create(service, customer, restaurant, items, key="checkout-key-000001", **kwargs):
    return await service.create_order(
        customer_id=customer.id,
        restaurant_id=restaurant.id,
        items=items,
        delivery_address=ADDRESS,
        idempotency_key=key,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_create_order_prices_persists_and_opens_intent(order_service, gateway, dispatcher, customer, restaurant, food_item):
    placement = await _create(
        order_service, customer, restaurant, [{"food_item_id": food_item.id, "quantity": 1}], ip_address="10.0.0.7"
    )
    order = placement.order

    assert placement.created
    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.PENDING
    assert (order.subtotal, order.delivery_fee, order.taxes, order.platform_fee) == (15000, 2000, 750, 300)
    assert order.total_price == 18050
    assert order.order_number.startswith("ORD")

    # Intent recorded on the order
    assert gateway.intents[0]["amount"] == 18050
    assert order.payment_id == placement.payment_intent["id"]
    assert order.transaction_id == placement.payment_intent["provider_order_id"]

    items = await OrderItem.filter(order_id=order.id)
    assert [(i.name, i.quantity, i.unit_price, i.line_total) for i in items] == [("Butter Chicken", 1, 15000, 15000)]

    audit = await OrderAuditLog.get(order_id=order.id, action="order_created")
    assert audit.ip_address == "10.0.0.7"
    assert audit.details["total_price"] == 18050

    await order.fetch_related("timeline")
    assert [entry.status for entry in order.timeline] == [OrderStatus.PENDING]

    assert (await FoodItem.get(id=food_item.id)).stock == 2
    assert dispatcher.event_types() == [events.ORDER_CREATED]


@pytest.mark.asyncio
async def test_same_idempotency_key_returns_existing_order(order_service, gateway, customer, restaurant, food_item):
    items = [{"food_item_id": food_item.id, "quantity": 1}]
    first = await _create(order_service, customer, restaurant, items)
    second = await _create(order_service, customer, restaurant, items)

    assert not second.created
    assert second.order.id == first.order.id
    assert second.payment_intent == first.payment_intent
    assert await Order.all().count() == 1
    assert len(gateway.intents) == 1
    # Stock is only reserved once
    assert (await FoodItem.get(id=food_item.id)).stock == 2


@pytest.mark.asyncio
async def test_idempotency_key_of_another_customer_is_refused(order_service, customer, restaurant, food_item):
    items = [{"food_item_id": food_item.id, "quantity": 1}]
    await _create(order_service, customer, restaurant, items)
    other = await Customer.create(name="Ravi")

    with pytest.raises(IdempotencyKeyReused):
        await _create(order_service, other, restaurant, items)


@pytest.mark.asyncio
async def test_insufficient_stock_leaves_nothing_behind(order_service, customer, restaurant, food_item):
    with pytest.raises(InsufficientStock) as excinfo:
        await _create(order_service, customer, restaurant, [{"food_item_id": food_item.id, "quantity": 4}])

    assert excinfo.value.details["available"] == 3
    assert await Order.all().count() == 0
    assert (await FoodItem.get(id=food_item.id)).stock == 3


@pytest.mark.asyncio
async def test_failure_on_later_item_rolls_back_earlier_decrements(order_service, customer, restaurant, food_item):
    naan = await FoodItem.create(restaurant=restaurant, name="Garlic Naan", price=4000, stock=1)

    with pytest.raises(InsufficientStock):
        await _create(
            order_service,
            customer,
            restaurant,
            [{"food_item_id": food_item.id, "quantity": 2}, {"food_item_id": naan.id, "quantity": 2}],
        )

    assert (await FoodItem.get(id=food_item.id)).stock == 3
    assert (await FoodItem.get(id=food_item.id)).sold_count == 0
    assert await Order.all().count() == 0
    assert await OrderItem.all().count() == 0


@pytest.mark.asyncio
async def test_payment_intent_failure_aborts_order(order_service, gateway, customer, restaurant, food_item):
    gateway.fail_intent = True

    with pytest.raises(PaymentIntentFailed):
        await _create(order_service, customer, restaurant, [{"food_item_id": food_item.id, "quantity": 1}])

    assert await Order.all().count() == 0
    assert await OrderAuditLog.all().count() == 0
    assert (await FoodItem.get(id=food_item.id)).stock == 3


@pytest.mark.asyncio
async def test_minimum_order_checked_on_subtotal(order_service, customer, restaurant):
    raita = await FoodItem.create(restaurant=restaurant, name="Raita", price=5000)

    with pytest.raises(MinimumOrderNotMet) as excinfo:
        await _create(order_service, customer, restaurant, [{"food_item_id": raita.id, "quantity": 1}])
    assert excinfo.value.details == {"minimum_order": 10000, "subtotal": 5000}

    placement = await _create(order_service, customer, restaurant, [{"food_item_id": raita.id, "quantity": 2}])
    assert placement.order.subtotal == 10000


@pytest.mark.asyncio
async def test_items_from_another_restaurant_are_rejected(order_service, customer, restaurant, food_item):
    other = await Restaurant.create(name="Dosa Corner", is_verified=True)
    dosa = await FoodItem.create(restaurant=other, name="Masala Dosa", price=12000)

    with pytest.raises(MixedRestaurantItems):
        await _create(
            order_service,
            customer,
            restaurant,
            [{"food_item_id": food_item.id, "quantity": 1}, {"food_item_id": dosa.id, "quantity": 1}],
        )
    assert (await FoodItem.get(id=food_item.id)).stock == 3


@pytest.mark.asyncio
async def test_unavailable_or_unknown_items_are_rejected(order_service, customer, restaurant, food_item):
    await FoodItem.filter(id=food_item.id).update(is_available=False)
    with pytest.raises(ItemUnavailable):
        await _create(order_service, customer, restaurant, [{"food_item_id": food_item.id, "quantity": 1}])

    with pytest.raises(ItemUnavailable):
        await _create(order_service, customer, restaurant, [{"food_item_id": uuid4(), "quantity": 1}])


@pytest.mark.asyncio
async def test_unverified_restaurant_and_unknown_customer(order_service, customer, restaurant, food_item):
    items = [{"food_item_id": food_item.id, "quantity": 1}]
    await Restaurant.filter(id=restaurant.id).update(is_verified=False)
    with pytest.raises(RestaurantUnavailable):
        await _create(order_service, customer, restaurant, items)

    await Restaurant.filter(id=restaurant.id).update(is_verified=True)
    ghost = Customer(id=uuid4(), name="ghost")
    with pytest.raises(CustomerNotFound):
        await _create(order_service, ghost, restaurant, items)


@pytest.mark.asyncio
@pytest.mark.parametrize("key, items", [
    ("short", [{"food_item_id": uuid4(), "quantity": 1}]),
    ("long-enough-key", []),
    ("long-enough-key", [{"food_item_id": uuid4(), "quantity": 0}]),
])
async def test_request_validation(order_service, customer, restaurant, key, items):
    with pytest.raises(ValidationError):
        await _create(order_service, customer, restaurant, items, key=key)


@pytest.mark.asyncio
async def test_customizations_and_preparation_time(order_service, customer, restaurant, food_item):
    await FoodItem.filter(id=food_item.id).update(preparation_time=45)
    placement = await _create(
        order_service,
        customer,
        restaurant,
        [{
            "food_item_id": food_item.id,
            "quantity": 2,
            "customizations": [{"name": "Extra gravy", "selected_options": ["large"], "additional_price": 500}],
        }],
    )
    assert placement.order.subtotal == 31000
    assert placement.order.estimated_preparation_time == 45


@pytest.mark.asyncio
async def test_event_failure_after_commit_does_not_fail_creation(gateway, customer, restaurant, food_item):
    service = OrderService(gateway=gateway, dispatcher=RecordingDispatcher(fail=True))

    placement = await _create(service, customer, restaurant, [{"food_item_id": food_item.id, "quantity": 1}])

    assert placement.created
    assert await Order.filter(id=placement.order.id).exists()


@pytest.mark.asyncio
async def test_get_order_is_limited_to_its_parties(order_service, placed_order, customer, restaurant):
    order = await order_service.get_order(placed_order.id, UserPrincipal(id=customer.id))
    assert len(order.items) == 1

    assert (await order_service.get_order(placed_order.id, RestaurantPrincipal(id=restaurant.id))).id == order.id

    with pytest.raises(AccessDenied):
        await order_service.get_order(placed_order.id, UserPrincipal(id=uuid4()))
    with pytest.raises(AccessDenied):
        await order_service.get_order(placed_order.id, RestaurantPrincipal(id=uuid4()))


@pytest.mark.asyncio
async def test_listings_paginate_and_map_restaurant_pending(order_service, customer, restaurant, food_item):
    await FoodItem.filter(id=food_item.id).update(stock=-1)
    for n in range(3):
        await _create(
            order_service, customer, restaurant, [{"food_item_id": food_item.id, "quantity": 1}], key=f"list-key-{n:06d}"
        )
    paid = await Order.filter(idempotency_key="list-key-000002").first()
    await Order.filter(id=paid.id).update(status=OrderStatus.PAYMENT_VERIFIED)

    orders, pagination = await order_service.list_customer_orders(customer.id, page=1, limit=2)
    assert len(orders) == 2
    assert pagination == {
        "current_page": 1,
        "total_pages": 2,
        "total_orders": 3,
        "has_next_page": True,
        "has_prev_page": False,
    }

    waiting, _ = await order_service.list_restaurant_orders(restaurant.id, status=OrderStatus.PENDING)
    assert [o.id for o in waiting] == [paid.id]
    assert (await order_service.latest_pending_order(restaurant.id)).id == paid.id

    with pytest.raises(ValidationError):
        await order_service.list_restaurant_orders(restaurant.id, sort_by="customer_email")
