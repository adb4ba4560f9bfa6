import uuid
from typing import Optional

from pydantic import BaseModel, Field


class FoodItemStockResponse(BaseModel):
    """Schema for fetching food item stock. stock is -1 when unlimited."""
    food_item_id: uuid.UUID
    restaurant_id: uuid.UUID
    name: str
    price: int
    stock: int
    sold_count: int
    is_available: bool
    updated_at: str


class RestaurantRequest(BaseModel):
    name: str = Field(..., description="Name of the restaurant.")
    is_active: bool = Field(True, description="Whether the restaurant is currently active.")
    is_verified: bool = Field(True, description="Whether the restaurant passed verification.")
    minimum_order: int = Field(0, ge=0, description="Minimum subtotal in minor units.")
    delivery_fee: Optional[int] = Field(None, ge=0, description="Delivery fee in minor units; default applies when empty.")
    default_preparation_time: Optional[int] = Field(None, ge=1, description="Preparation time floor in minutes.")


class FoodItemRequest(BaseModel):
    name: str = Field(..., description="Name of the food item (e.g., Chicken Biryani).")
    price: int = Field(..., gt=0, description="Selling price in minor units.")
    stock: int = Field(-1, ge=-1, description="Available stock; -1 for unlimited.")
    is_available: bool = Field(True, description="Whether the item can be ordered.")
    preparation_time: int = Field(20, ge=1, description="Preparation time in minutes.")
