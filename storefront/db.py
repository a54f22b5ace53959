"""
Storage contract plus the in-memory and direct-SQL implementations.
"""

from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Type

from sqlalchemy import and_, create_engine, delete, func, select, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.errors import (
    BackendUnavailable,
    DanglingReferenceError,
    NotFoundError,
    UniquenessViolation,
    ValidationFailure,
)
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
from storefront.seed import MEMORY_CATALOG, RELATIONAL_CATALOG, SeedCatalog, seed_catalog
from storefront.sessions import InMemorySessionStore, PostgresSessionStore, SessionStore
from storefront.tables import (
    CATEGORY_COLUMNS,
    ORDER_COLUMNS,
    PRODUCT_COLUMNS,
    REVIEW_COLUMNS,
    ROWS_BY_TABLE,
    TESTIMONIAL_COLUMNS,
    USER_COLUMNS,
    Base,
    CartItemRow,
    CategoryRow,
    OrderRow,
    ProductRow,
    ReviewRow,
    TestimonialRow,
    UserRow,
    to_columns,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_quantity(quantity: int) -> None:
    if quantity < 1:
        raise ValidationFailure(
            "Quantity must be at least 1",
            errors=[{"loc": ["quantity"], "msg": "must be at least 1"}],
        )


def join_product(item: CartItem, product: Optional[Product]) -> CartItemWithProduct:
    if product is None:
        raise DanglingReferenceError(
            f"Product with id {item.product_id} not found for cart item {item.id}"
        )
    return CartItemWithProduct(**item.model_dump(), product=product)


class DbClient(Protocol):
    """Interface every storage backend implements."""

    session_store: SessionStore

    # Users
    def get_user(self, user_id: int) -> Optional[User]:
        ...

    def get_user_by_username(self, username: str) -> Optional[User]:
        ...

    def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    def create_user(self, insert_user: InsertUser) -> User:
        ...

    # Categories
    def get_all_categories(self) -> list[Category]:
        ...

    def get_category_by_id(self, category_id: int) -> Optional[Category]:
        ...

    def create_category(self, insert_category: InsertCategory) -> Category:
        ...

    # Products
    def get_all_products(self) -> list[Product]:
        ...

    def get_product_by_id(self, product_id: int) -> Optional[Product]:
        ...

    def get_products_by_category(self, category_id: int) -> list[Product]:
        ...

    def get_featured_products(self) -> list[Product]:
        ...

    def create_product(self, insert_product: InsertProduct) -> Product:
        ...

    # Reviews
    def get_reviews_by_product_id(self, product_id: int) -> list[Review]:
        ...

    def create_review(self, insert_review: InsertReview) -> Review:
        ...

    # Testimonials
    def get_all_testimonials(self) -> list[Testimonial]:
        ...

    def create_testimonial(self, insert_testimonial: InsertTestimonial) -> Testimonial:
        ...

    # Cart
    def get_cart_items(self, user_id: int) -> list[CartItemWithProduct]:
        ...

    def add_to_cart(self, insert_cart_item: InsertCartItem) -> CartItem:
        ...

    def update_cart_item(self, item_id: int, quantity: int) -> CartItem:
        ...

    def remove_cart_item(self, item_id: int) -> None:
        ...

    def clear_cart(self, user_id: int) -> None:
        ...

    # Orders
    def create_order(self, insert_order: InsertOrder) -> Order:
        ...

    def get_order_by_id(self, order_id: int) -> Optional[Order]:
        ...

    def get_user_orders(self, user_id: int) -> list[Order]:
        ...


class InMemoryDbClient:
    """Seeded in-memory store for development, tests and startup fallback."""

    def __init__(
        self,
        catalog: SeedCatalog = MEMORY_CATALOG,
        session_store: Optional[SessionStore] = None,
    ):
        self.catalog = catalog
        self.session_store = session_store or InMemorySessionStore()
        self._lock = threading.RLock()
        self._init_collections()
        seed_catalog(self, catalog)

    def _init_collections(self) -> None:
        self.users: Dict[int, User] = {}
        self.categories: Dict[int, Category] = {}
        self.products: Dict[int, Product] = {}
        self.reviews: Dict[int, Review] = {}
        self.testimonials: Dict[int, Testimonial] = {}
        self.cart_items: Dict[int, CartItem] = {}
        self.orders: Dict[int, Order] = {}
        self.counters: Dict[str, int] = {}

    def _next_id(self, collection: str) -> int:
        with self._lock:
            self.counters[collection] = self.counters.get(collection, 0) + 1
            return self.counters[collection]

    def reset(self) -> None:
        """Drop everything and re-seed (useful in tests)."""
        with self._lock:
            self._init_collections()
            seed_catalog(self, self.catalog)

    # Users
    def get_user(self, user_id: int) -> Optional[User]:
        return self.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        for user in self.users.values():
            if user.username == username:
                return user
        return None

    def get_user_by_email(self, email: str) -> Optional[User]:
        for user in self.users.values():
            if user.email == email:
                return user
        return None

    def create_user(self, insert_user: InsertUser) -> User:
        with self._lock:
            if self.get_user_by_username(insert_user.username):
                raise UniquenessViolation(
                    f"Username {insert_user.username!r} is already taken"
                )
            if self.get_user_by_email(insert_user.email):
                raise UniquenessViolation(
                    f"Email {insert_user.email!r} is already registered"
                )
            user = User(
                id=self._next_id("users"),
                created_at=_utcnow(),
                **insert_user.model_dump(),
            )
            self.users[user.id] = user
            return user

    # Categories
    def get_all_categories(self) -> list[Category]:
        return list(self.categories.values())

    def get_category_by_id(self, category_id: int) -> Optional[Category]:
        return self.categories.get(category_id)

    def create_category(self, insert_category: InsertCategory) -> Category:
        category = Category(
            id=self._next_id("categories"), **insert_category.model_dump()
        )
        self.categories[category.id] = category
        return category

    # Products
    def get_all_products(self) -> list[Product]:
        return list(self.products.values())

    def get_product_by_id(self, product_id: int) -> Optional[Product]:
        return self.products.get(product_id)

    def get_products_by_category(self, category_id: int) -> list[Product]:
        return [p for p in self.products.values() if p.category_id == category_id]

    def get_featured_products(self) -> list[Product]:
        return [p for p in self.products.values() if p.is_featured]

    def create_product(self, insert_product: InsertProduct) -> Product:
        product = Product(id=self._next_id("products"), **insert_product.model_dump())
        self.products[product.id] = product
        return product

    # Reviews
    def get_reviews_by_product_id(self, product_id: int) -> list[Review]:
        return [r for r in self.reviews.values() if r.product_id == product_id]

    def create_review(self, insert_review: InsertReview) -> Review:
        review = Review(id=self._next_id("reviews"), **insert_review.model_dump())
        self.reviews[review.id] = review
        return review

    # Testimonials
    def get_all_testimonials(self) -> list[Testimonial]:
        return list(self.testimonials.values())

    def create_testimonial(self, insert_testimonial: InsertTestimonial) -> Testimonial:
        testimonial = Testimonial(
            id=self._next_id("testimonials"), **insert_testimonial.model_dump()
        )
        self.testimonials[testimonial.id] = testimonial
        return testimonial

    # Cart
    def get_cart_items(self, user_id: int) -> list[CartItemWithProduct]:
        return [
            join_product(item, self.products.get(item.product_id))
            for item in self.cart_items.values()
            if item.user_id == user_id
        ]

    def add_to_cart(self, insert_cart_item: InsertCartItem) -> CartItem:
        with self._lock:
            for item in self.cart_items.values():
                if (
                    item.user_id == insert_cart_item.user_id
                    and item.product_id == insert_cart_item.product_id
                ):
                    item.quantity += insert_cart_item.quantity
                    return item
            item = CartItem(
                id=self._next_id("cart_items"),
                added_at=_utcnow(),
                **insert_cart_item.model_dump(),
            )
            self.cart_items[item.id] = item
            return item

    def update_cart_item(self, item_id: int, quantity: int) -> CartItem:
        check_quantity(quantity)
        item = self.cart_items.get(item_id)
        if item is None:
            raise NotFoundError(f"Cart item with id {item_id} not found")
        item.quantity = quantity
        return item

    def remove_cart_item(self, item_id: int) -> None:
        self.cart_items.pop(item_id, None)

    def clear_cart(self, user_id: int) -> None:
        with self._lock:
            for item_id in [i.id for i in self.cart_items.values() if i.user_id == user_id]:
                del self.cart_items[item_id]

    # Orders
    def create_order(self, insert_order: InsertOrder) -> Order:
        data = insert_order.model_dump()
        data["items"] = copy.deepcopy(insert_order.items)
        order = Order(id=self._next_id("orders"), created_at=_utcnow(), **data)
        self.orders[order.id] = order
        return order

    def get_order_by_id(self, order_id: int) -> Optional[Order]:
        return self.orders.get(order_id)

    def get_user_orders(self, user_id: int) -> list[Order]:
        return [o for o in self.orders.values() if o.user_id == user_id]


def build_engine(
    database_url: str,
    *,
    pool_size: int = 5,
    pool_timeout: float = 30.0,
    connect_timeout: int = 10,
    statement_timeout_ms: Optional[int] = None,
) -> Engine:
    """
    Create an engine with explicit acquisition/connect/statement timeouts.

    In-memory SQLite shares one connection across threads so every session
    sees the same database.
    """
    url = make_url(database_url)
    kwargs: dict[str, Any] = {
        "future": True,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
    }
    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        else:
            kwargs["connect_args"] = {"timeout": connect_timeout}
    else:
        connect_args: dict[str, Any] = {"connect_timeout": connect_timeout}
        if statement_timeout_ms:
            connect_args["options"] = f"-c statement_timeout={int(statement_timeout_ms)}"
        kwargs.update(
            pool_size=pool_size,
            pool_timeout=pool_timeout,
            connect_args=connect_args,
        )
    return create_engine(url, **kwargs)


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    Every method scopes its connection with ``with self.Session()`` so the
    connection goes back to the pool on every exit path.
    """

    def __init__(
        self,
        database_url: Optional[str],
        *,
        pool_size: int = 5,
        pool_timeout: float = 30.0,
        connect_timeout: int = 10,
        statement_timeout_ms: Optional[int] = None,
        session_ttl_seconds: Optional[int] = None,
        session_prune_interval_seconds: float = 900,
        create_schema: bool = True,
        seed: bool = True,
        catalog: SeedCatalog = RELATIONAL_CATALOG,
    ):
        if not database_url:
            raise BackendUnavailable("DATABASE_URL is required for PostgresDbClient")
        self.engine = build_engine(
            database_url,
            pool_size=pool_size,
            pool_timeout=pool_timeout,
            connect_timeout=connect_timeout,
            statement_timeout_ms=statement_timeout_ms,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        self._lock = threading.RLock()
        if create_schema:
            Base.metadata.create_all(self.engine)
        store_kwargs: dict[str, Any] = {
            "prune_interval_seconds": session_prune_interval_seconds
        }
        if session_ttl_seconds:
            store_kwargs["ttl_seconds"] = session_ttl_seconds
        self.session_store = PostgresSessionStore(self.engine, **store_kwargs)
        logger.info(
            "Database storage initialized (%s)",
            self.engine.url.render_as_string(hide_password=True),
        )
        if seed:
            self.initialize(catalog)

    def initialize(self, catalog: SeedCatalog = RELATIONAL_CATALOG) -> None:
        """Seed ``catalog`` when the database has no categories yet."""
        logger.info("Initializing database tables...")
        if self.get_all_categories():
            logger.info("Database already contains data, skipping initialization")
            return
        logger.info("Database appears empty, seeding %s catalog", catalog.name)
        seed_catalog(self, catalog)

    def has_catalog(self) -> bool:
        with self.Session() as session:
            return session.execute(select(CategoryRow.id).limit(1)).first() is not None

    # Row -> model mapping. Column names are spelled out rather than matched
    # by attribute name.

    def _to_user(self, row: UserRow) -> User:
        return User(
            id=row.id,
            username=row.username,
            email=row.email,
            password=row.password,
            name=row.name,
            role=row.role,
            created_at=row.created_at,
        )

    def _to_category(self, row: CategoryRow) -> Category:
        return Category(
            id=row.id,
            name=row.name,
            description=row.description,
            image_url=row.image_url,
        )

    def _to_product(self, row: ProductRow) -> Product:
        return Product(
            id=row.id,
            name=row.name,
            tagline=row.tagline,
            description=row.description,
            price=row.price,
            original_price=row.original_price,
            image_url=row.image_url,
            rating=row.rating if row.rating is not None else 5.0,
            review_count=row.review_count or 0,
            category_id=row.category_id,
            is_featured=bool(row.is_featured),
            is_best_seller=bool(row.is_best_seller),
            is_new_arrival=bool(row.is_new_arrival),
            in_stock=row.in_stock if row.in_stock is not None else True,
        )

    def _to_review(self, row: ReviewRow) -> Review:
        return Review(
            id=row.id,
            product_id=row.product_id,
            user_name=row.user_name,
            user_image_url=row.user_image_url,
            rating=row.rating,
            comment=row.comment,
            is_verified=row.is_verified,
        )

    def _to_testimonial(self, row: TestimonialRow) -> Testimonial:
        return Testimonial(
            id=row.id,
            user_name=row.user_name,
            user_image_url=row.user_image_url,
            rating=row.rating,
            comment=row.comment,
            is_verified=row.is_verified,
        )

    def _to_cart_item(self, row: CartItemRow) -> CartItem:
        return CartItem(
            id=row.id,
            user_id=row.user_id,
            product_id=row.product_id,
            quantity=row.quantity,
            added_at=row.added_at,
        )

    def _to_order(self, row: OrderRow) -> Order:
        return Order(
            id=row.id,
            user_id=row.user_id,
            items=row.items,
            status=row.status,
            total_amount=row.total_amount,
            shipping_address=row.shipping_address,
            created_at=row.created_at,
        )

    @staticmethod
    def _next_id(session: Session, row_cls: Type[Any]) -> int:
        current = session.execute(select(func.max(row_cls.id))).scalar()
        return (current or 0) + 1

    # Users
    def get_user(self, user_id: int) -> Optional[User]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self.Session() as session:
            stmt = select(UserRow).where(UserRow.username == username)
            row = session.execute(stmt).scalars().first()
            return self._to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self.Session() as session:
            stmt = select(UserRow).where(UserRow.email == email)
            row = session.execute(stmt).scalars().first()
            return self._to_user(row) if row else None

    def create_user(self, insert_user: InsertUser, *, explicit_id: bool = False) -> User:
        """
        Insert a user. With ``explicit_id`` the id is ``max(id)+1`` instead of
        the sequence value and the sequence is resynced afterwards; only safe
        with a single writer.
        """
        with self._lock, self.Session() as session:
            taken = session.execute(
                select(UserRow.username, UserRow.email).where(
                    (UserRow.username == insert_user.username)
                    | (UserRow.email == insert_user.email)
                )
            ).first()
            if taken:
                field = "Username" if taken.username == insert_user.username else "Email"
                raise UniquenessViolation(f"{field} is already registered")

            row = UserRow(
                **to_columns(insert_user, USER_COLUMNS), created_at=_utcnow()
            )
            if explicit_id:
                row.id = self._next_id(session, UserRow)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise UniquenessViolation(
                    f"Username {insert_user.username!r} or email already exists"
                ) from exc
            session.refresh(row)
            if explicit_id:
                # Keep nextval() past the id just written.
                self.resync_sequences(["users"])
            return self._to_user(row)

    # Categories
    def get_all_categories(self) -> list[Category]:
        with self.Session() as session:
            rows = session.execute(select(CategoryRow).order_by(CategoryRow.id)).scalars()
            return [self._to_category(row) for row in rows]

    def get_category_by_id(self, category_id: int) -> Optional[Category]:
        with self.Session() as session:
            row = session.get(CategoryRow, category_id)
            return self._to_category(row) if row else None

    def create_category(self, insert_category: InsertCategory) -> Category:
        with self.Session() as session:
            row = CategoryRow(**to_columns(insert_category, CATEGORY_COLUMNS))
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_category(row)

    # Products
    def get_all_products(self) -> list[Product]:
        with self.Session() as session:
            rows = session.execute(select(ProductRow).order_by(ProductRow.id)).scalars()
            return [self._to_product(row) for row in rows]

    def get_product_by_id(self, product_id: int) -> Optional[Product]:
        with self.Session() as session:
            row = session.get(ProductRow, product_id)
            return self._to_product(row) if row else None

    def get_products_by_category(self, category_id: int) -> list[Product]:
        with self.Session() as session:
            stmt = (
                select(ProductRow)
                .where(ProductRow.category_id == category_id)
                .order_by(ProductRow.id)
            )
            return [self._to_product(row) for row in session.execute(stmt).scalars()]

    def get_featured_products(self) -> list[Product]:
        with self.Session() as session:
            stmt = (
                select(ProductRow)
                .where(ProductRow.is_featured.is_(True))
                .order_by(ProductRow.id)
            )
            return [self._to_product(row) for row in session.execute(stmt).scalars()]

    def create_product(self, insert_product: InsertProduct) -> Product:
        with self.Session() as session:
            row = ProductRow(**to_columns(insert_product, PRODUCT_COLUMNS))
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_product(row)

    # Reviews
    def get_reviews_by_product_id(self, product_id: int) -> list[Review]:
        with self.Session() as session:
            stmt = (
                select(ReviewRow)
                .where(ReviewRow.product_id == product_id)
                .order_by(ReviewRow.id)
            )
            return [self._to_review(row) for row in session.execute(stmt).scalars()]

    def create_review(self, insert_review: InsertReview) -> Review:
        with self.Session() as session:
            row = ReviewRow(**to_columns(insert_review, REVIEW_COLUMNS))
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_review(row)

    # Testimonials
    def get_all_testimonials(self) -> list[Testimonial]:
        with self.Session() as session:
            rows = session.execute(
                select(TestimonialRow).order_by(TestimonialRow.id)
            ).scalars()
            return [self._to_testimonial(row) for row in rows]

    def create_testimonial(self, insert_testimonial: InsertTestimonial) -> Testimonial:
        with self.Session() as session:
            row = TestimonialRow(**to_columns(insert_testimonial, TESTIMONIAL_COLUMNS))
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_testimonial(row)

    # Cart
    def get_cart_items(self, user_id: int) -> list[CartItemWithProduct]:
        with self.Session() as session:
            stmt = (
                select(CartItemRow)
                .where(CartItemRow.user_id == user_id)
                .order_by(CartItemRow.id)
            )
            items = [self._to_cart_item(row) for row in session.execute(stmt).scalars()]
        # One product lookup per row; carts are small.
        return [join_product(item, self.get_product_by_id(item.product_id)) for item in items]

    def add_to_cart(self, insert_cart_item: InsertCartItem) -> CartItem:
        with self._lock:
            with self.Session() as session:
                stmt = select(CartItemRow).where(
                    and_(
                        CartItemRow.user_id == insert_cart_item.user_id,
                        CartItemRow.product_id == insert_cart_item.product_id,
                    )
                )
                existing = session.execute(stmt).scalars().first()
                if existing is None:
                    row = CartItemRow(
                        user_id=insert_cart_item.user_id,
                        product_id=insert_cart_item.product_id,
                        quantity=insert_cart_item.quantity,
                        added_at=_utcnow(),
                    )
                    session.add(row)
                    session.commit()
                    session.refresh(row)
                    return self._to_cart_item(row)
                existing_id, existing_quantity = existing.id, existing.quantity
            return self.update_cart_item(
                existing_id, existing_quantity + insert_cart_item.quantity
            )

    def update_cart_item(self, item_id: int, quantity: int) -> CartItem:
        check_quantity(quantity)
        with self.Session() as session:
            row = session.get(CartItemRow, item_id)
            if row is None:
                raise NotFoundError(f"Cart item with id {item_id} not found")
            row.quantity = quantity
            session.commit()
            session.refresh(row)
            return self._to_cart_item(row)

    def remove_cart_item(self, item_id: int) -> None:
        with self.Session() as session:
            session.execute(delete(CartItemRow).where(CartItemRow.id == item_id))
            session.commit()

    def clear_cart(self, user_id: int) -> None:
        with self.Session() as session:
            session.execute(delete(CartItemRow).where(CartItemRow.user_id == user_id))
            session.commit()

    # Orders
    def create_order(self, insert_order: InsertOrder) -> Order:
        with self.Session() as session:
            values = to_columns(insert_order, ORDER_COLUMNS)
            values["items"] = copy.deepcopy(insert_order.items)
            row = OrderRow(**values, created_at=_utcnow())
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_order(row)

    def get_order_by_id(self, order_id: int) -> Optional[Order]:
        with self.Session() as session:
            row = session.get(OrderRow, order_id)
            return self._to_order(row) if row else None

    def get_user_orders(self, user_id: int) -> list[Order]:
        with self.Session() as session:
            stmt = select(OrderRow).where(OrderRow.user_id == user_id).order_by(OrderRow.id)
            return [self._to_order(row) for row in session.execute(stmt).scalars()]

    # Maintenance helpers used by the hosted migration.
    def upsert(self, table: str, values: dict[str, Any]) -> None:
        """Insert-or-update one column-keyed row by primary key."""
        row_cls = ROWS_BY_TABLE[table]
        with self.Session() as session:
            session.merge(row_cls(**values))
            session.commit()

    def count_rows(self, table: str) -> int:
        row_cls = ROWS_BY_TABLE[table]
        with self.Session() as session:
            return session.execute(select(func.count()).select_from(row_cls)).scalar_one()

    def resync_sequences(self, tables: list[str]) -> None:
        """Move serial sequences past rows written with explicit ids (Postgres only)."""
        if self.engine.dialect.name != "postgresql":
            return
        with self.Session() as session:
            for table in tables:
                if table not in ROWS_BY_TABLE:
                    raise ValueError(f"Unknown table: {table}")
                session.execute(
                    text(
                        f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), "
                        f"COALESCE((SELECT MAX(id) FROM {table}), 0) + 1, false)"
                    )
                )
            session.commit()

    def dispose(self) -> None:
        self.engine.dispose()
