from tortoise import fields, models
import uuid

# Sentinel stored in FoodItem.stock for items that never run out
UNLIMITED_STOCK = -1


class Restaurant(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    name = fields.CharField(max_length=255)
    is_active = fields.BooleanField(default=True)
    is_verified = fields.BooleanField(default=False)
    minimum_order = fields.IntField(default=0) # minor units
    delivery_fee = fields.IntField(null=True) # minor units, None -> platform default
    default_preparation_time = fields.IntField(null=True) # minutes
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "restaurants"
        indexes = [
            ("is_active", "is_verified"),  # For filtering orderable restaurants
        ]


class FoodItem(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    restaurant = fields.ForeignKeyField("models.Restaurant", related_name="food_items")
    name = fields.CharField(max_length=100)
    price = fields.IntField() # minor units
    stock = fields.IntField(default=UNLIMITED_STOCK)
    sold_count = fields.IntField(default=0)
    is_available = fields.BooleanField(default=True)
    preparation_time = fields.IntField(default=20) # minutes
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "food_items"
        indexes = [
            ("restaurant_id",),                 # Fast restaurant menu queries
            ("restaurant_id", "is_available"),  # Composite: restaurant's orderable items
        ]

    @property
    def has_unlimited_stock(self) -> bool:
        return self.stock == UNLIMITED_STOCK
