# scripts/seed_data.py
import asyncio

from tortoise import Tortoise

from foodorder.core.db import DB_URL, MODELS_MODULES
from foodorder.core.security import create_access_token
from foodorder.models.catalog import FoodItem, Restaurant, UNLIMITED_STOCK
from foodorder.models.customer import Customer


async def init():
    await Tortoise.init(db_url=DB_URL, modules={"models": MODELS_MODULES})
    # safe=True leaves existing tables alone
    await Tortoise.generate_schemas(safe=True)


async def seed():
    # Prices are in paise
    rest, _ = await Restaurant.get_or_create(
        name="Demo Restaurant",
        defaults={"is_active": True, "is_verified": True, "minimum_order": 10000, "default_preparation_time": 25},
    )
    print("Restaurant:", rest.id)

    m1, _ = await FoodItem.get_or_create(restaurant=rest, name="Paneer Wrap", defaults={"price": 14900, "stock": 50})
    m2, _ = await FoodItem.get_or_create(restaurant=rest, name="Chili Paneer Rice", defaults={"price": 19900, "stock": 30, "preparation_time": 35})
    m3, _ = await FoodItem.get_or_create(restaurant=rest, name="Cold Drink", defaults={"price": 4900, "stock": UNLIMITED_STOCK, "preparation_time": 2})

    # If existing, reset stock (idempotent)
    m1.stock, m2.stock, m3.stock = 50, 30, UNLIMITED_STOCK
    await m1.save(); await m2.save(); await m3.save()
    print("Food items:", str(m1.id), str(m2.id), str(m3.id))

    customer, _ = await Customer.get_or_create(
        email="demo.customer@example.com",
        defaults={"name": "Demo Customer", "phone": "+919999999999"},
    )
    print("Customer:", customer.id)

    print("User token:", create_access_token(customer.id, "user"))
    print("Restaurant token:", create_access_token(rest.id, "restaurant"))


async def main():
    await init()
    await seed()
    await Tortoise.close_connections()

if __name__ == "__main__":
    asyncio.run(main())
