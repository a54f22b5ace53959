"""
Pydantic schemas for storefront entities and API payloads.

Attributes are snake_case in Python; on the wire every model uses the
camelCase alias (``imageUrl``, ``isFeatured``, ...).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class StoreModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# Users


class InsertUser(StoreModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: EmailStr
    password: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    role: Literal["user", "admin"] = "user"


class User(InsertUser):
    id: int
    created_at: datetime


class PublicUser(StoreModel):
    id: int
    username: str
    email: EmailStr
    name: str
    role: str
    created_at: datetime


# Catalog


class InsertCategory(StoreModel):
    name: str = Field(..., min_length=1)
    description: str
    image_url: str


class Category(InsertCategory):
    id: int


class InsertProduct(StoreModel):
    name: str = Field(..., min_length=1)
    tagline: str
    description: str
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    image_url: str
    rating: float = Field(default=5.0, ge=0, le=5)
    review_count: int = Field(default=0, ge=0)
    category_id: int
    is_featured: bool = False
    is_best_seller: bool = False
    is_new_arrival: bool = False
    in_stock: bool = True

    @field_validator("price", "original_price")
    @classmethod
    def _round_currency(cls, value: Optional[float]) -> Optional[float]:
        return round(value, 2) if value is not None else None


class Product(InsertProduct):
    id: int


class InsertReview(StoreModel):
    product_id: int
    user_name: str
    user_image_url: str
    rating: int = Field(..., ge=1, le=5)
    comment: str
    is_verified: bool = True


class Review(InsertReview):
    id: int


class InsertTestimonial(StoreModel):
    user_name: str
    user_image_url: str
    rating: int = Field(..., ge=1, le=5)
    comment: str
    is_verified: bool = True


class Testimonial(InsertTestimonial):
    id: int


# Cart + orders


class InsertCartItem(StoreModel):
    user_id: int
    product_id: int
    quantity: int = Field(default=1, ge=1)


class CartItem(InsertCartItem):
    id: int
    added_at: datetime


class CartItemWithProduct(CartItem):
    product: Product


class InsertOrder(StoreModel):
    user_id: int
    items: list[dict[str, Any]]
    status: str = "pending"
    total_amount: float = Field(..., ge=0)
    shipping_address: str


class Order(InsertOrder):
    id: int
    created_at: datetime


# Request / response payloads


class RegisterRequest(StoreModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1)


class LoginRequest(StoreModel):
    username: str
    password: str


class ReviewRequest(StoreModel):
    user_name: str
    user_image_url: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., max_length=2048)
    is_verified: bool = False


class AddToCartRequest(StoreModel):
    user_id: Optional[int] = None
    product_id: int
    quantity: int = Field(default=1, ge=1)


class UpdateCartRequest(StoreModel):
    quantity: int = Field(..., ge=1)


class CartMutationResponse(StoreModel):
    success: bool
    message: str
    data: Optional[CartItem] = None


class StatusResponse(StoreModel):
    success: bool
    message: str


class HealthResponse(StoreModel):
    status: Literal["ok"]
    backend: str
