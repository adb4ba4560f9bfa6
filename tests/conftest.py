import pytest
import pytest_asyncio
from tortoise import Tortoise

from foodorder.core.db import MODELS_MODULES
from foodorder.core.principal import RestaurantPrincipal, UserPrincipal
from foodorder.models.catalog import FoodItem, Restaurant
from foodorder.models.customer import Customer
from foodorder.models.order import Order
from foodorder.services.order_service import OrderService
from foodorder.services.order_status import OrderStatusService
from foodorder.services.payment_service import PaymentService
from foodorder.testing.testing_mocks import ADDRESS, FakeGateway, RecordingDispatcher, captured_entity


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database per test; transactions and rollbacks are real."""
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": MODELS_MODULES})
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest_asyncio.fixture
async def restaurant(db):
    return await Restaurant.create(name="Spice Route", is_active=True, is_verified=True, minimum_order=10000)


@pytest_asyncio.fixture
async def customer(db):
    return await Customer.create(name="Asha Rao", email="asha@example.com", phone="+919800000001")


@pytest_asyncio.fixture
async def food_item(restaurant):
    return await FoodItem.create(restaurant=restaurant, name="Butter Chicken", price=15000, stock=3)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def order_service(gateway, dispatcher):
    return OrderService(gateway=gateway, dispatcher=dispatcher)


@pytest.fixture
def status_service(gateway, dispatcher):
    return OrderStatusService(gateway=gateway, dispatcher=dispatcher)


@pytest.fixture
def payment_service(gateway, dispatcher):
    return PaymentService(gateway=gateway, dispatcher=dispatcher)


@pytest.fixture
def user(customer):
    return UserPrincipal(id=customer.id)


@pytest.fixture
def restaurant_principal(restaurant):
    return RestaurantPrincipal(id=restaurant.id)


@pytest_asyncio.fixture
async def placed_order(order_service, customer, restaurant, food_item):
    placement = await order_service.create_order(
        customer_id=customer.id,
        restaurant_id=restaurant.id,
        items=[{"food_item_id": food_item.id, "quantity": 1}],
        delivery_address=ADDRESS,
        idempotency_key="checkout-0001-abcdef",
    )
    return placement.order


@pytest_asyncio.fixture
async def paid_order(placed_order, payment_service):
    await payment_service.handle_payment_captured(captured_entity(placed_order))
    return await Order.get(id=placed_order.id)
