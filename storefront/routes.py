"""
HTTP routes for the storefront API.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from werkzeug.security import check_password_hash, generate_password_hash

from storefront.config import Settings, get_settings
from storefront.db import DbClient
from storefront.dependencies import (
    StorageSelector,
    get_db_client,
    get_session_store,
    get_storage_selector,
)
from storefront.migration import switch_to_hosted
from storefront.schemas import (
    AddToCartRequest,
    CartItemWithProduct,
    CartMutationResponse,
    Category,
    HealthResponse,
    InsertCartItem,
    InsertOrder,
    InsertProduct,
    InsertReview,
    InsertUser,
    LoginRequest,
    Order,
    Product,
    PublicUser,
    RegisterRequest,
    Review,
    ReviewRequest,
    StatusResponse,
    Testimonial,
    UpdateCartRequest,
    User,
)
from storefront.sessions import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _public(user: User) -> PublicUser:
    return PublicUser.model_validate(user.model_dump())


def _session_user_id(
    request: Request, sessions: SessionStore, settings: Settings
) -> Optional[int]:
    sid = request.cookies.get(settings.session_cookie_name)
    if not sid:
        return None
    sess = sessions.get(sid)
    return sess.get("user_id") if sess else None


def _require_user_id(
    request: Request,
    sessions: SessionStore,
    settings: Settings,
    explicit: Optional[int],
) -> int:
    """Session user wins; otherwise the caller must pass a user id."""
    user_id = _session_user_id(request, sessions, settings) or explicit
    if user_id is None:
        raise HTTPException(status_code=400, detail="User ID is required")
    return user_id


def _start_session(
    response: Response, sessions: SessionStore, settings: Settings, user: User
) -> None:
    sid = secrets.token_urlsafe(32)
    sessions.set(sid, {"user_id": user.id}, max_age=settings.session_ttl_seconds)
    response.set_cookie(
        settings.session_cookie_name,
        sid,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        samesite="lax",
    )


@router.get("/health", response_model=HealthResponse)
def health(db: DbClient = Depends(get_db_client)):
    return HealthResponse(status="ok", backend=type(db).__name__)


# Categories


@router.get("/categories", response_model=list[Category])
def list_categories(db: DbClient = Depends(get_db_client)):
    return db.get_all_categories()


@router.get("/categories/{category_id}", response_model=Category)
def get_category(category_id: int, db: DbClient = Depends(get_db_client)):
    category = db.get_category_by_id(category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


# Products


@router.get("/products", response_model=list[Product])
def list_products(db: DbClient = Depends(get_db_client)):
    return db.get_all_products()


@router.get("/products/featured", response_model=list[Product])
def featured_products(db: DbClient = Depends(get_db_client)):
    return db.get_featured_products()


@router.get("/products/category/{category_id}", response_model=list[Product])
def products_by_category(category_id: int, db: DbClient = Depends(get_db_client)):
    return db.get_products_by_category(category_id)


@router.get("/products/{product_id}", response_model=Product)
def get_product(product_id: int, db: DbClient = Depends(get_db_client)):
    product = db.get_product_by_id(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.post("/products", response_model=Product, status_code=201)
def create_product(payload: InsertProduct, db: DbClient = Depends(get_db_client)):
    return db.create_product(payload)


@router.get("/products/{product_id}/reviews", response_model=list[Review])
def list_reviews(product_id: int, db: DbClient = Depends(get_db_client)):
    return db.get_reviews_by_product_id(product_id)


@router.post("/products/{product_id}/reviews", response_model=Review, status_code=201)
def create_review(
    product_id: int, payload: ReviewRequest, db: DbClient = Depends(get_db_client)
):
    if not db.get_product_by_id(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return db.create_review(InsertReview(product_id=product_id, **payload.model_dump()))


# Testimonials


@router.get("/testimonials", response_model=list[Testimonial])
def list_testimonials(db: DbClient = Depends(get_db_client)):
    return db.get_all_testimonials()


# Cart


@router.get("/cart", response_model=list[CartItemWithProduct])
def get_cart(
    request: Request,
    user_id: Optional[int] = Query(default=None, alias="userId"),
    db: DbClient = Depends(get_db_client),
    sessions: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    return db.get_cart_items(_require_user_id(request, sessions, settings, user_id))


@router.post("/cart", response_model=CartMutationResponse, status_code=201)
def add_to_cart(
    request: Request,
    payload: AddToCartRequest,
    db: DbClient = Depends(get_db_client),
    sessions: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    user_id = _require_user_id(request, sessions, settings, payload.user_id)
    if not db.get_product_by_id(payload.product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    item = db.add_to_cart(
        InsertCartItem(
            user_id=user_id, product_id=payload.product_id, quantity=payload.quantity
        )
    )
    return CartMutationResponse(success=True, message="Item added to cart", data=item)


@router.put("/cart/{item_id}", response_model=CartMutationResponse)
def update_cart_item(
    item_id: int, payload: UpdateCartRequest, db: DbClient = Depends(get_db_client)
):
    item = db.update_cart_item(item_id, payload.quantity)
    return CartMutationResponse(success=True, message="Cart item updated", data=item)


@router.delete("/cart/{item_id}", response_model=CartMutationResponse)
def remove_cart_item(item_id: int, db: DbClient = Depends(get_db_client)):
    db.remove_cart_item(item_id)
    return CartMutationResponse(success=True, message="Item removed from cart")


@router.delete("/cart", response_model=CartMutationResponse)
def clear_cart(
    request: Request,
    user_id: Optional[int] = Query(default=None, alias="userId"),
    db: DbClient = Depends(get_db_client),
    sessions: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    db.clear_cart(_require_user_id(request, sessions, settings, user_id))
    return CartMutationResponse(success=True, message="Cart cleared")


# Orders


@router.post("/orders", response_model=Order, status_code=201)
def create_order(
    request: Request,
    payload: InsertOrder,
    db: DbClient = Depends(get_db_client),
    sessions: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    user_id = _session_user_id(request, sessions, settings)
    if user_id is not None:
        payload = payload.model_copy(update={"user_id": user_id})
    return db.create_order(payload)


@router.get("/orders", response_model=list[Order])
def list_orders(
    request: Request,
    user_id: Optional[int] = Query(default=None, alias="userId"),
    db: DbClient = Depends(get_db_client),
    sessions: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    return db.get_user_orders(_require_user_id(request, sessions, settings, user_id))


@router.get("/orders/{order_id}", response_model=Order)
def get_order(order_id: int, db: DbClient = Depends(get_db_client)):
    order = db.get_order_by_id(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


# Auth


@router.post("/register", response_model=PublicUser, status_code=201)
def register(
    payload: RegisterRequest,
    response: Response,
    db: DbClient = Depends(get_db_client),
    sessions: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    user = db.create_user(
        InsertUser(
            username=payload.username,
            email=payload.email,
            password=generate_password_hash(payload.password),
            name=payload.name,
        )
    )
    logger.info("Registered user %s (id=%s)", user.username, user.id)
    _start_session(response, sessions, settings, user)
    return _public(user)


@router.post("/login", response_model=PublicUser)
def login(
    payload: LoginRequest,
    response: Response,
    db: DbClient = Depends(get_db_client),
    sessions: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    user = db.get_user_by_username(payload.username)
    if not user or not check_password_hash(user.password, payload.password):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    _start_session(response, sessions, settings, user)
    return _public(user)


@router.post("/logout", response_model=StatusResponse)
def logout(
    request: Request,
    response: Response,
    sessions: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    sid = request.cookies.get(settings.session_cookie_name)
    if sid:
        sessions.destroy(sid)
    response.delete_cookie(settings.session_cookie_name)
    return StatusResponse(success=True, message="Logged out")


@router.get("/user", response_model=PublicUser)
def current_user(
    request: Request,
    db: DbClient = Depends(get_db_client),
    sessions: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    user_id = _session_user_id(request, sessions, settings)
    user = db.get_user(user_id) if user_id is not None else None
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    sessions.touch(request.cookies[settings.session_cookie_name], settings.session_ttl_seconds)
    return _public(user)


# Administration


@router.post("/supabase/migrate", response_model=StatusResponse)
def migrate_to_supabase(selector: StorageSelector = Depends(get_storage_selector)):
    success, message = switch_to_hosted(selector)
    if not success:
        logger.error("Hosted migration failed: %s", message)
        return JSONResponse(
            status_code=500, content={"success": False, "message": message}
        )
    return StatusResponse(success=True, message=message)
