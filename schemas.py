"""
Database Schemas for the clothing storefront

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase of the class name.

Example: class Product -> collection "product"
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

CATEGORIES = ["Men", "Women", "Kids"]
SIZES = ["S", "M", "L", "XL"]

Category = Literal["Men", "Women", "Kids"]
Size = Literal["S", "M", "L", "XL"]


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Allowed status moves. Delivered and cancelled are terminal.
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


# Core domain models

class User(BaseModel):
    name: str
    email: EmailStr
    hashed_password: str
    role: Literal["user", "admin"] = "user"


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: str
    price: float = Field(..., ge=0)
    image_url: str = Field(..., alias="imageUrl")
    category: Category
    sizes: List[Size] = Field(default_factory=list)
    stock: int = Field(0, ge=0)

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}

    @field_validator("sizes")
    @classmethod
    def unique_sizes(cls, v: List[str]) -> List[str]:
        return [s for s in SIZES if s in v]


class CartItem(BaseModel):
    product_id: str
    size: Size
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    version: int = 1


class ShippingAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1, alias="zipCode")
    country: str = Field(..., min_length=1)

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None
    size: Size
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    order_number: str
    user_id: str
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    shipping_address: ShippingAddress
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime
