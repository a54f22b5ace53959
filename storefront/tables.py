"""
Relational schema shared by the direct-SQL and hosted backends.

Column names are snake_case and fixed for compatibility with existing
databases. Each entity has an explicit field -> column map that is used
whenever rows cross the boundary as plain dicts (hosted API payloads,
migration upserts) instead of ORM objects.
"""

from __future__ import annotations

from typing import Any, Mapping, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

ModelT = TypeVar("ModelT", bound=BaseModel)


class UserRow(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), nullable=False, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    password = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    role = Column(String(16), nullable=False, default="user")
    created_at = Column(DateTime(timezone=True), nullable=False)


class CategoryRow(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    image_url = Column(Text, nullable=False)


class ProductRow(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    tagline = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Float, nullable=False)
    original_price = Column(Float, nullable=True)
    image_url = Column(Text, nullable=False)
    rating = Column(Float, nullable=False, default=5.0)
    review_count = Column(Integer, nullable=False, default=0)
    category_id = Column(Integer, nullable=False, index=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    is_best_seller = Column(Boolean, nullable=True, default=False)
    is_new_arrival = Column(Boolean, nullable=True, default=False)
    in_stock = Column(Boolean, nullable=True, default=True)


class ReviewRow(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, nullable=False, index=True)
    user_name = Column(Text, nullable=False)
    user_image_url = Column(Text, nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False)
    is_verified = Column(Boolean, nullable=False, default=True)


class TestimonialRow(Base):
    __tablename__ = "testimonials"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_name = Column(Text, nullable=False)
    user_image_url = Column(Text, nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=False)
    is_verified = Column(Boolean, nullable=False, default=True)


class CartItemRow(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    added_at = Column(DateTime(timezone=True), nullable=False)


class OrderRow(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    items = Column(JSON, nullable=False)
    status = Column(String(32), nullable=False)
    total_amount = Column(Float, nullable=False)
    shipping_address = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class SessionRow(Base):
    __tablename__ = "sessions"

    sid = Column(String(128), primary_key=True)
    sess = Column(JSON, nullable=False)
    expire = Column(DateTime(timezone=True), nullable=False, index=True)


USER_COLUMNS = {
    "id": "id",
    "username": "username",
    "email": "email",
    "password": "password",
    "name": "name",
    "role": "role",
    "created_at": "created_at",
}

CATEGORY_COLUMNS = {
    "id": "id",
    "name": "name",
    "description": "description",
    "image_url": "image_url",
}

PRODUCT_COLUMNS = {
    "id": "id",
    "name": "name",
    "tagline": "tagline",
    "description": "description",
    "price": "price",
    "original_price": "original_price",
    "image_url": "image_url",
    "rating": "rating",
    "review_count": "review_count",
    "category_id": "category_id",
    "is_featured": "is_featured",
    "is_best_seller": "is_best_seller",
    "is_new_arrival": "is_new_arrival",
    "in_stock": "in_stock",
}

REVIEW_COLUMNS = {
    "id": "id",
    "product_id": "product_id",
    "user_name": "user_name",
    "user_image_url": "user_image_url",
    "rating": "rating",
    "comment": "comment",
    "is_verified": "is_verified",
}

TESTIMONIAL_COLUMNS = {
    "id": "id",
    "user_name": "user_name",
    "user_image_url": "user_image_url",
    "rating": "rating",
    "comment": "comment",
    "is_verified": "is_verified",
}

CART_ITEM_COLUMNS = {
    "id": "id",
    "user_id": "user_id",
    "product_id": "product_id",
    "quantity": "quantity",
    "added_at": "added_at",
}

ORDER_COLUMNS = {
    "id": "id",
    "user_id": "user_id",
    "items": "items",
    "status": "status",
    "total_amount": "total_amount",
    "shipping_address": "shipping_address",
    "created_at": "created_at",
}

ROWS_BY_TABLE: dict[str, Type[Any]] = {
    "users": UserRow,
    "categories": CategoryRow,
    "products": ProductRow,
    "reviews": ReviewRow,
    "testimonials": TestimonialRow,
    "cart_items": CartItemRow,
    "orders": OrderRow,
}

# Tables the hosted service must be able to see; created by the migration.
HOSTED_TABLES = [
    CategoryRow.__table__,
    ProductRow.__table__,
    ReviewRow.__table__,
    TestimonialRow.__table__,
    OrderRow.__table__,
    UserRow.__table__,
    CartItemRow.__table__,
]

# Nullable boolean flags come back as None from rows written by older schemas.
_NULL_DEFAULTS = {"is_best_seller": False, "is_new_arrival": False, "in_stock": True}


def from_columns(
    model_cls: Type[ModelT], row: Mapping[str, Any], columns: Mapping[str, str]
) -> ModelT:
    """Build a model from a column-keyed row using an explicit field map."""
    values: dict[str, Any] = {}
    for field_name, column in columns.items():
        if column not in row:
            continue
        value = row[column]
        if value is None and field_name in _NULL_DEFAULTS:
            value = _NULL_DEFAULTS[field_name]
        values[field_name] = value
    return model_cls.model_validate(values)


def to_columns(
    model: BaseModel, columns: Mapping[str, str], *, mode: str = "python"
) -> dict[str, Any]:
    """
    Flatten a model into a column-keyed dict.

    Use ``mode="json"`` for payloads that go over HTTP (datetimes become ISO
    strings).
    """
    data = model.model_dump(mode=mode)
    return {columns[key]: value for key, value in data.items() if key in columns}
