"""
Read/write access to catalog records used by the order core. Every method
takes the caller's connection so stock changes join the caller's transaction.
"""
import logging
from typing import Optional
from uuid import UUID

from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.expressions import F

from foodorder.models.catalog import FoodItem, Restaurant
from foodorder.models.customer import Customer

log = logging.getLogger(__name__)


class CatalogAccessor:
    async def get_restaurant(self, restaurant_id: UUID, conn: Optional[BaseDBAsyncClient] = None) -> Optional[Restaurant]:
        return await Restaurant.get_or_none(id=restaurant_id).using_db(conn)

    async def get_customer(self, customer_id: UUID, conn: Optional[BaseDBAsyncClient] = None) -> Optional[Customer]:
        return await Customer.get_or_none(id=customer_id).using_db(conn)

    async def get_food_item(self, food_item_id: UUID, conn: Optional[BaseDBAsyncClient] = None) -> Optional[FoodItem]:
        # Row lock so concurrent orders on the same item serialize on it
        return (
            await FoodItem.filter(id=food_item_id)
            .using_db(conn)
            .select_for_update()
            .first()
        )

    @staticmethod
    def is_in_stock(item: FoodItem, quantity: int) -> bool:
        if item.has_unlimited_stock:
            return True
        return item.stock >= quantity

    async def decrement_stock(self, item: FoodItem, quantity: int, conn: Optional[BaseDBAsyncClient] = None) -> bool:
        """
        Takes `quantity` off the item's stock and adds it to sold_count.
        The write is conditional on enough stock remaining, so it returns
        False instead of going negative when a concurrent order won.
        """
        if item.has_unlimited_stock:
            await FoodItem.filter(id=item.id).using_db(conn).update(sold_count=F("sold_count") + quantity)
            item.sold_count += quantity
            return True

        updated = await (
            FoodItem.filter(id=item.id, stock__gte=quantity)
            .using_db(conn)
            .update(stock=F("stock") - quantity, sold_count=F("sold_count") + quantity)
        )
        if not updated:
            return False
        item.stock -= quantity
        item.sold_count += quantity
        return True

    async def restore_stock(self, food_item_id: UUID, quantity: int, conn: Optional[BaseDBAsyncClient] = None) -> Optional[FoodItem]:
        """Puts quantity back on a finite-stock item. Unlimited items are left alone."""
        item = await self.get_food_item(food_item_id, conn)
        if item is None:
            log.warning(f"Cannot restore stock: food item {food_item_id} no longer exists.")
            return None
        if item.has_unlimited_stock:
            return item

        item.stock += quantity
        item.sold_count = max(0, item.sold_count - quantity)
        await item.save(update_fields=["stock", "sold_count", "updated_at"], using_db=conn)
        return item
