import logging
from uuid import UUID

from fastapi import APIRouter, status

from foodorder.core.errors import FoodItemNotFound, NotFoundError
from foodorder.models.catalog import FoodItem, Restaurant
from foodorder.schemas.catalog import FoodItemRequest, FoodItemStockResponse, RestaurantRequest
from foodorder.schemas.response import SuccessResponse

log = logging.getLogger(__name__)

router = APIRouter()


@router.get("/food-items/{food_item_id}", response_model=SuccessResponse)
async def get_food_item_stock(food_item_id: UUID):
    """Fetches the available stock for a specific food item."""
    item = await FoodItem.get_or_none(id=food_item_id)
    if not item:
        raise FoodItemNotFound()

    data = FoodItemStockResponse(
        food_item_id=item.id,
        restaurant_id=item.restaurant_id,
        name=item.name,
        price=item.price,
        stock=item.stock,
        sold_count=item.sold_count,
        is_available=item.is_available,
        updated_at=str(item.updated_at),
    )
    return SuccessResponse(data=data.model_dump(mode="json"))


@router.post("/restaurants/{restaurant_id}/food-items", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def add_food_item(restaurant_id: UUID, item_data: FoodItemRequest):
    """Adds a food item to a restaurant's menu (seed/admin utility)."""
    restaurant = await Restaurant.get_or_none(id=restaurant_id)
    if not restaurant:
        raise NotFoundError(f"Restaurant with ID {restaurant_id} not found.")

    item = await FoodItem.create(restaurant=restaurant, **item_data.model_dump())
    log.info(f"Added food item {item.id} ({item.name}) to restaurant {restaurant.id}.")
    return SuccessResponse(
        data={"food_item_id": str(item.id), "stock": item.stock},
        message=f"Successfully added '{item.name}' to {restaurant.name}.",
    )


@router.post("/restaurants", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def add_restaurant(restaurant_data: RestaurantRequest):
    """Creates a new restaurant record."""
    restaurant = await Restaurant.create(**restaurant_data.model_dump())
    log.info(f"Created restaurant {restaurant.id} ({restaurant.name}).")
    return SuccessResponse(
        data={"restaurant_id": str(restaurant.id)},
        message=f"Restaurant '{restaurant.name}' created successfully.",
    )
