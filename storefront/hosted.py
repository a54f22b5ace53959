"""
Hosted (Supabase) backend.

Every operation goes to the hosted PostgREST API first and falls back to
direct SQL on the same database when the API errors, e.g. while its schema
cache still lags behind the real tables.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol, Type, TypeVar

import httpx
from postgrest.exceptions import APIError
from pydantic import BaseModel
from sqlalchemy import DateTime, delete, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from supabase import ClientOptions, create_client

from storefront.db import DbClient, InMemoryDbClient, PostgresDbClient, check_quantity, join_product
from storefront.errors import BackendUnavailable, HostedApiError, NotFoundError, UniquenessViolation
from storefront.fallback import with_fallback
from storefront.migration import migrate_to_hosted
from storefront.schemas import (
    CartItem,
    CartItemWithProduct,
    Category,
    InsertCartItem,
    InsertCategory,
    InsertOrder,
    InsertProduct,
    InsertReview,
    InsertTestimonial,
    InsertUser,
    Order,
    Product,
    Review,
    Testimonial,
    User,
)
from storefront.seed import RELATIONAL_CATALOG, SeedCatalog, seed_catalog
from storefront.tables import (
    CART_ITEM_COLUMNS,
    CATEGORY_COLUMNS,
    ORDER_COLUMNS,
    PRODUCT_COLUMNS,
    REVIEW_COLUMNS,
    ROWS_BY_TABLE,
    TESTIMONIAL_COLUMNS,
    USER_COLUMNS,
    from_columns,
    to_columns,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class HostedApi(Protocol):
    """The slice of the PostgREST surface the hosted backend uses."""

    def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Optional[dict[str, Any]] = None,
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        ...

    def select_one(self, table: str, *, filters: dict[str, Any]) -> dict:
        ...

    def insert(self, table: str, values: dict[str, Any]) -> dict:
        ...

    def upsert(self, table: str, values: dict[str, Any]) -> dict:
        ...

    def update(
        self, table: str, values: dict[str, Any], *, filters: dict[str, Any]
    ) -> list[dict]:
        ...

    def delete(self, table: str, *, filters: dict[str, Any]) -> None:
        ...


class SupabaseHostedApi:
    """
    PostgREST access through supabase-py.

    Client and transport errors are re-raised as HostedApiError so callers
    only deal with one error type.
    """

    def __init__(self, url: Optional[str], key: Optional[str], *, timeout: float = 10):
        if not url or not key:
            raise BackendUnavailable(
                "SUPABASE_URL and SUPABASE_KEY are required for the hosted backend"
            )
        self._client = create_client(
            url, key, options=ClientOptions(postgrest_client_timeout=timeout)
        )
        logger.info("Supabase client initialized")

    def _execute(self, query):
        try:
            return query.execute()
        except APIError as exc:
            raise HostedApiError(exc.message or str(exc), code=exc.code) from exc
        except httpx.HTTPError as exc:
            raise HostedApiError(str(exc)) from exc

    @staticmethod
    def _apply_filters(query, filters: Optional[dict[str, Any]]):
        for column, value in (filters or {}).items():
            query = query.eq(column, value)
        return query

    def select(self, table, *, columns="*", filters=None, order=None, limit=None):
        query = self._apply_filters(self._client.table(table).select(columns), filters)
        if order:
            query = query.order(order)
        if limit:
            query = query.limit(limit)
        return self._execute(query).data or []

    def select_one(self, table, *, filters):
        query = self._apply_filters(self._client.table(table).select("*"), filters)
        return self._execute(query.single()).data

    def insert(self, table, values):
        data = self._execute(self._client.table(table).insert(values)).data
        if not data:
            raise HostedApiError(f"Insert into {table} returned no rows")
        return data[0]

    def upsert(self, table, values):
        data = self._execute(
            self._client.table(table).upsert(values, on_conflict="id")
        ).data
        if not data:
            raise HostedApiError(f"Upsert into {table} returned no rows")
        return data[0]

    def update(self, table, values, *, filters):
        query = self._apply_filters(self._client.table(table).update(values), filters)
        return self._execute(query).data or []

    def delete(self, table, *, filters):
        self._execute(self._apply_filters(self._client.table(table).delete(), filters))


@dataclass
class SqlHostedApi:
    """
    Test double that serves the PostgREST surface from a SQLAlchemy engine.

    Point it at the same engine as the direct-SQL path to mirror a real
    deployment, where both paths reach one database. ``unavailable`` tables
    and ``fail_all`` simulate a lagging schema cache or an outage.
    """

    engine: Engine
    unavailable: set[str] = field(default_factory=set)
    fail_all: bool = False
    calls: list[tuple[str, str]] = field(default_factory=list)

    def _table(self, op: str, name: str):
        self.calls.append((op, name))
        if self.fail_all or name in self.unavailable:
            raise HostedApiError(
                f"Could not find the table 'public.{name}' in the schema cache",
                code="PGRST205",
            )
        return ROWS_BY_TABLE[name].__table__

    @staticmethod
    def _coerce(table, values: dict[str, Any]) -> dict[str, Any]:
        coerced = {}
        for key, value in values.items():
            column = table.c[key]
            if isinstance(column.type, DateTime) and isinstance(value, str):
                value = datetime.fromisoformat(value)
            coerced[key] = value
        return coerced

    @staticmethod
    def _where(stmt, table, filters: Optional[dict[str, Any]]):
        for column, value in (filters or {}).items():
            stmt = stmt.where(table.c[column] == value)
        return stmt

    def _run(self, fn: Callable[[Any], Any]) -> Any:
        try:
            with self.engine.begin() as conn:
                return fn(conn)
        except IntegrityError as exc:
            message = str(exc.orig)
            unique = "unique" in message.lower() or "duplicate" in message.lower()
            raise HostedApiError(message, code="23505" if unique else "23502") from exc
        except SQLAlchemyError as exc:
            raise HostedApiError(str(exc), code="42P01") from exc

    def select(self, table, *, columns="*", filters=None, order=None, limit=None):
        tbl = self._table("select", table)
        cols = [tbl.c[c.strip()] for c in columns.split(",")] if columns != "*" else [tbl]
        stmt = self._where(select(*cols), tbl, filters)
        if order:
            stmt = stmt.order_by(tbl.c[order])
        if limit:
            stmt = stmt.limit(limit)
        return self._run(lambda conn: [dict(r._mapping) for r in conn.execute(stmt)])

    def select_one(self, table, *, filters):
        rows = self.select(table, filters=filters)
        if len(rows) != 1:
            raise HostedApiError(
                "JSON object requested, multiple (or no) rows returned",
                code=HostedApiError.NOT_FOUND_CODE,
            )
        return rows[0]

    def insert(self, table, values):
        tbl = self._table("insert", table)
        stmt = insert(tbl).values(**self._coerce(tbl, values)).returning(tbl)
        return self._run(lambda conn: dict(conn.execute(stmt).one()._mapping))

    def upsert(self, table, values):
        tbl = self._table("upsert", table)
        values = self._coerce(tbl, values)

        def run(conn):
            exists = conn.execute(select(tbl.c.id).where(tbl.c.id == values["id"])).first()
            if exists:
                stmt = update(tbl).where(tbl.c.id == values["id"]).values(**values)
            else:
                stmt = insert(tbl).values(**values)
            conn.execute(stmt)
            return dict(conn.execute(select(tbl).where(tbl.c.id == values["id"])).one()._mapping)

        return self._run(run)

    def update(self, table, values, *, filters):
        tbl = self._table("update", table)
        stmt = self._where(update(tbl), tbl, filters).values(**self._coerce(tbl, values))
        stmt = stmt.returning(tbl)
        return self._run(lambda conn: [dict(r._mapping) for r in conn.execute(stmt)])

    def delete(self, table, *, filters):
        tbl = self._table("delete", table)
        stmt = self._where(delete(tbl), tbl, filters)
        self._run(lambda conn: conn.execute(stmt))


class SupabaseDbClient:
    """
    Hosted-service backend with per-operation fallback to direct SQL.

    ``direct`` must point at the hosted project's own database so both paths
    read and write the same rows.
    """

    CRITICAL_TABLES = ("categories", "products", "testimonials")

    def __init__(
        self,
        api: HostedApi,
        direct: PostgresDbClient,
        *,
        migration_source: Optional[DbClient] = None,
        catalog: SeedCatalog = RELATIONAL_CATALOG,
    ):
        self.api = api
        self.direct = direct
        self.migration_source = migration_source
        self.catalog = catalog
        self.session_store = direct.session_store
        self.hosted_ready = False
        self._lock = threading.RLock()

    # Initialization

    def _unreachable_tables(self) -> list[str]:
        unreachable = []
        for table in self.CRITICAL_TABLES:
            try:
                self.api.select(table, columns="id", limit=1)
            except Exception as exc:
                logger.debug("Hosted probe of %s failed: %s", table, exc)
                unreachable.append(table)
        return unreachable

    def initialize(self) -> None:
        """Probe, migrate if needed, seed if empty, then verify. Never raises."""
        logger.info("Initializing Supabase storage")

        unreachable = self._unreachable_tables()
        if unreachable:
            logger.warning(
                "Hosted API cannot see %s; running migration", ", ".join(unreachable)
            )
            source = self.migration_source or InMemoryDbClient()
            try:
                migrate_to_hosted(self.api, self.direct, source)
            except Exception:
                logger.exception("Migration during hosted initialization failed")

        # Checked over the direct connection so a broken API cannot hide data.
        try:
            if self.direct.has_catalog():
                logger.info("Database tables already initialized")
            else:
                logger.info("No categories found, initializing with sample data")
                seed_catalog(self, self.catalog)
        except Exception:
            logger.exception("Sample data initialization failed")

        unreachable = self._unreachable_tables()
        self.hosted_ready = not unreachable
        if unreachable:
            logger.warning(
                "Hosted API still cannot see %s; all operations in this process "
                "will rely on direct SQL fallback",
                ", ".join(unreachable),
            )
        else:
            logger.info("Hosted storage verified")

    # Hosted-path helpers

    def _one(
        self,
        table: str,
        model_cls: Type[ModelT],
        columns: dict[str, str],
        filters: dict[str, Any],
        fallback: Callable[[], Optional[ModelT]],
        operation: str,
    ) -> Optional[ModelT]:
        return with_fallback(
            lambda: from_columns(
                model_cls, self.api.select_one(table, filters=filters), columns
            ),
            fallback,
            operation=operation,
            not_found=None,
        )

    def _many(
        self,
        table: str,
        model_cls: Type[ModelT],
        columns: dict[str, str],
        fallback: Callable[[], list[ModelT]],
        operation: str,
        filters: Optional[dict[str, Any]] = None,
    ) -> list[ModelT]:
        return with_fallback(
            lambda: [
                from_columns(model_cls, row, columns)
                for row in self.api.select(table, filters=filters, order="id")
            ],
            fallback,
            operation=operation,
        )

    def _insert(
        self,
        table: str,
        model_cls: Type[ModelT],
        columns: dict[str, str],
        values: dict[str, Any],
    ) -> ModelT:
        # A 23505 here is left to the fallback: it is usually a primary key
        # collision from a lagging sequence, and direct SQL re-checks real
        # duplicates itself.
        row = self.api.insert(table, values)
        return from_columns(model_cls, row, columns)

    def _update_quantity(self, item_id: int, quantity: int) -> CartItem:
        rows = self.api.update("cart_items", {"quantity": quantity}, filters={"id": item_id})
        if not rows:
            raise NotFoundError(f"Cart item with id {item_id} not found")
        return from_columns(CartItem, rows[0], CART_ITEM_COLUMNS)

    # Users
    def get_user(self, user_id: int) -> Optional[User]:
        return self._one(
            "users", User, USER_COLUMNS, {"id": user_id},
            lambda: self.direct.get_user(user_id), "get_user",
        )

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._one(
            "users", User, USER_COLUMNS, {"username": username},
            lambda: self.direct.get_user_by_username(username), "get_user_by_username",
        )

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._one(
            "users", User, USER_COLUMNS, {"email": email},
            lambda: self.direct.get_user_by_email(email), "get_user_by_email",
        )

    def create_user(self, insert_user: InsertUser) -> User:
        """
        Hosted insert first; the fallback assigns ``max(id)+1`` explicitly
        because the sequence may lag after a migration. Single writer only.
        """
        with self._lock:
            if self.get_user_by_username(insert_user.username):
                raise UniquenessViolation(
                    f"Username {insert_user.username!r} is already taken"
                )
            if self.get_user_by_email(insert_user.email):
                raise UniquenessViolation(
                    f"Email {insert_user.email!r} is already registered"
                )
            values = to_columns(insert_user, USER_COLUMNS, mode="json")
            values["created_at"] = _utcnow_iso()
            return with_fallback(
                lambda: self._insert("users", User, USER_COLUMNS, values),
                lambda: self.direct.create_user(insert_user, explicit_id=True),
                operation="create_user",
            )

    # Categories
    def get_all_categories(self) -> list[Category]:
        return self._many(
            "categories", Category, CATEGORY_COLUMNS,
            self.direct.get_all_categories, "get_all_categories",
        )

    def get_category_by_id(self, category_id: int) -> Optional[Category]:
        return self._one(
            "categories", Category, CATEGORY_COLUMNS, {"id": category_id},
            lambda: self.direct.get_category_by_id(category_id), "get_category_by_id",
        )

    def create_category(self, insert_category: InsertCategory) -> Category:
        values = to_columns(insert_category, CATEGORY_COLUMNS, mode="json")
        return with_fallback(
            lambda: self._insert("categories", Category, CATEGORY_COLUMNS, values),
            lambda: self.direct.create_category(insert_category),
            operation="create_category",
        )

    # Products
    def get_all_products(self) -> list[Product]:
        return self._many(
            "products", Product, PRODUCT_COLUMNS,
            self.direct.get_all_products, "get_all_products",
        )

    def get_product_by_id(self, product_id: int) -> Optional[Product]:
        return self._one(
            "products", Product, PRODUCT_COLUMNS, {"id": product_id},
            lambda: self.direct.get_product_by_id(product_id), "get_product_by_id",
        )

    def get_products_by_category(self, category_id: int) -> list[Product]:
        return self._many(
            "products", Product, PRODUCT_COLUMNS,
            lambda: self.direct.get_products_by_category(category_id),
            "get_products_by_category",
            filters={"category_id": category_id},
        )

    def get_featured_products(self) -> list[Product]:
        return self._many(
            "products", Product, PRODUCT_COLUMNS,
            self.direct.get_featured_products, "get_featured_products",
            filters={"is_featured": True},
        )

    def create_product(self, insert_product: InsertProduct) -> Product:
        values = to_columns(insert_product, PRODUCT_COLUMNS, mode="json")
        return with_fallback(
            lambda: self._insert("products", Product, PRODUCT_COLUMNS, values),
            lambda: self.direct.create_product(insert_product),
            operation="create_product",
        )

    # Reviews
    def get_reviews_by_product_id(self, product_id: int) -> list[Review]:
        return self._many(
            "reviews", Review, REVIEW_COLUMNS,
            lambda: self.direct.get_reviews_by_product_id(product_id),
            "get_reviews_by_product_id",
            filters={"product_id": product_id},
        )

    def create_review(self, insert_review: InsertReview) -> Review:
        values = to_columns(insert_review, REVIEW_COLUMNS, mode="json")
        return with_fallback(
            lambda: self._insert("reviews", Review, REVIEW_COLUMNS, values),
            lambda: self.direct.create_review(insert_review),
            operation="create_review",
        )

    # Testimonials
    def get_all_testimonials(self) -> list[Testimonial]:
        return self._many(
            "testimonials", Testimonial, TESTIMONIAL_COLUMNS,
            self.direct.get_all_testimonials, "get_all_testimonials",
        )

    def create_testimonial(self, insert_testimonial: InsertTestimonial) -> Testimonial:
        values = to_columns(insert_testimonial, TESTIMONIAL_COLUMNS, mode="json")
        return with_fallback(
            lambda: self._insert("testimonials", Testimonial, TESTIMONIAL_COLUMNS, values),
            lambda: self.direct.create_testimonial(insert_testimonial),
            operation="create_testimonial",
        )

    # Cart
    def get_cart_items(self, user_id: int) -> list[CartItemWithProduct]:
        """
        N+1 join over the hosted API. Any failure discards the partial result
        and redoes the whole join over direct SQL.
        """

        def hosted_join() -> list[CartItemWithProduct]:
            joined = []
            rows = self.api.select("cart_items", filters={"user_id": user_id}, order="id")
            for row in rows:
                item = from_columns(CartItem, row, CART_ITEM_COLUMNS)
                try:
                    product_row = self.api.select_one(
                        "products", filters={"id": item.product_id}
                    )
                except HostedApiError as exc:
                    if not exc.is_not_found:
                        raise
                    product_row = None
                product = (
                    from_columns(Product, product_row, PRODUCT_COLUMNS)
                    if product_row
                    else None
                )
                joined.append(join_product(item, product))
            return joined

        return with_fallback(
            hosted_join,
            lambda: self.direct.get_cart_items(user_id),
            operation="get_cart_items",
        )

    def add_to_cart(self, insert_cart_item: InsertCartItem) -> CartItem:
        def hosted_merge() -> CartItem:
            existing = self.api.select(
                "cart_items",
                filters={
                    "user_id": insert_cart_item.user_id,
                    "product_id": insert_cart_item.product_id,
                },
                limit=1,
            )
            if existing:
                current = from_columns(CartItem, existing[0], CART_ITEM_COLUMNS)
                return self._update_quantity(
                    current.id, current.quantity + insert_cart_item.quantity
                )
            values = to_columns(insert_cart_item, CART_ITEM_COLUMNS, mode="json")
            values["added_at"] = _utcnow_iso()
            return self._insert("cart_items", CartItem, CART_ITEM_COLUMNS, values)

        with self._lock:
            return with_fallback(
                hosted_merge,
                lambda: self.direct.add_to_cart(insert_cart_item),
                operation="add_to_cart",
            )

    def update_cart_item(self, item_id: int, quantity: int) -> CartItem:
        check_quantity(quantity)
        return with_fallback(
            lambda: self._update_quantity(item_id, quantity),
            lambda: self.direct.update_cart_item(item_id, quantity),
            operation="update_cart_item",
        )

    def remove_cart_item(self, item_id: int) -> None:
        with_fallback(
            lambda: self.api.delete("cart_items", filters={"id": item_id}),
            lambda: self.direct.remove_cart_item(item_id),
            operation="remove_cart_item",
        )

    def clear_cart(self, user_id: int) -> None:
        with_fallback(
            lambda: self.api.delete("cart_items", filters={"user_id": user_id}),
            lambda: self.direct.clear_cart(user_id),
            operation="clear_cart",
        )

    # Orders
    def create_order(self, insert_order: InsertOrder) -> Order:
        values = to_columns(insert_order, ORDER_COLUMNS, mode="json")
        values["created_at"] = _utcnow_iso()
        return with_fallback(
            lambda: self._insert("orders", Order, ORDER_COLUMNS, values),
            lambda: self.direct.create_order(insert_order),
            operation="create_order",
        )

    def get_order_by_id(self, order_id: int) -> Optional[Order]:
        return self._one(
            "orders", Order, ORDER_COLUMNS, {"id": order_id},
            lambda: self.direct.get_order_by_id(order_id), "get_order_by_id",
        )

    def get_user_orders(self, user_id: int) -> list[Order]:
        return self._many(
            "orders", Order, ORDER_COLUMNS,
            lambda: self.direct.get_user_orders(user_id), "get_user_orders",
            filters={"user_id": user_id},
        )
