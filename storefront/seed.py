"""
Fixed sample catalogs and a backend-agnostic seeding routine.

Seeding goes through the storage contract's own ``create_*`` calls, so the
same routine fills any backend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from storefront.schemas import InsertCategory, InsertProduct, InsertTestimonial

if TYPE_CHECKING:
    from storefront.db import DbClient

logger = logging.getLogger(__name__)

_UNSPLASH = "https://images.unsplash.com/photo-{}?ixlib=rb-4.0.3&auto=format&fit=crop&w={}&h={}&q=80"


@dataclass(frozen=True)
class SeedCatalog:
    name: str
    categories: list[InsertCategory]
    # (category name, product fields without category_id)
    products: list[tuple[str, dict[str, Any]]]
    testimonials: list[InsertTestimonial]


# Canonical fallback catalog served by the in-memory backend and copied by
# the hosted migration. 4 of 6 products are featured.
MEMORY_CATALOG = SeedCatalog(
    name="memory",
    categories=[
        InsertCategory(
            name="Facial Care",
            description="Cleansers, serums, masks, and more",
            image_url=_UNSPLASH.format("1598454444604-73563a529875", 700, 800),
        ),
        InsertCategory(
            name="Body Rituals",
            description="Oils, scrubs, lotions, and more",
            image_url=_UNSPLASH.format("1596870230056-88eea6ef6d12", 700, 800),
        ),
        InsertCategory(
            name="Aromatherapy",
            description="Essential oils, diffusers, and blends",
            image_url=_UNSPLASH.format("1593150320617-fc076c75ff85", 700, 800),
        ),
    ],
    products=[
        (
            "Facial Care",
            {
                "name": "Harmony Facial Cleanser",
                "tagline": "Purify & Balance",
                "price": 34.00,
                "description": (
                    "A gentle cleanser that removes impurities without stripping "
                    "the skin's natural moisture."
                ),
                "image_url": _UNSPLASH.format("1595876210541-bc5e4a35de24", 800, 900),
                "rating": 4.5,
                "review_count": 128,
                "is_featured": True,
            },
        ),
        (
            "Facial Care",
            {
                "name": "Tranquil Face Serum",
                "tagline": "Hydrate & Soothe",
                "price": 49.00,
                "description": (
                    "This potent serum delivers deep hydration and soothes "
                    "irritated skin."
                ),
                "image_url": _UNSPLASH.format("1608248597279-f99d160bfcbc", 800, 900),
                "rating": 5.0,
                "review_count": 76,
                "is_featured": True,
            },
        ),
        (
            "Body Rituals",
            {
                "name": "Renewal Body Scrub",
                "tagline": "Exfoliate & Renew",
                "price": 42.00,
                "description": (
                    "Reveal smoother, more radiant skin with this natural "
                    "exfoliating scrub."
                ),
                "image_url": _UNSPLASH.format("1616769364512-4f5659d12046", 800, 900),
                "rating": 4.7,
                "review_count": 214,
                "is_featured": True,
                "is_best_seller": True,
            },
        ),
        (
            "Body Rituals",
            {
                "name": "Serene Body Oil",
                "tagline": "Nourish & Restore",
                "price": 38.00,
                "description": (
                    "A luxurious body oil that deeply nourishes and restores the skin."
                ),
                "image_url": _UNSPLASH.format("1655344085290-ba7e9e049934", 800, 900),
                "rating": 4.0,
                "review_count": 92,
                "is_featured": True,
            },
        ),
        (
            "Facial Care",
            {
                "name": "Ultimate Harmony Kit",
                "tagline": "Complete Wellness Set",
                "price": 129.00,
                "original_price": 149.00,
                "description": (
                    "Facial cleanser, serum, body oil, and aromatherapy blend in "
                    "one beautifully packaged set."
                ),
                "image_url": _UNSPLASH.format("1608248543803-ba4f8c70ae0b", 1024, 1200),
                "rating": 5.0,
                "review_count": 48,
                "is_new_arrival": True,
            },
        ),
        (
            "Aromatherapy",
            {
                "name": "Lavender Dream Essential Oil",
                "tagline": "Calm & Unwind",
                "price": 24.00,
                "description": (
                    "Steam-distilled lavender oil for diffusers, baths, and "
                    "evening rituals."
                ),
                "image_url": _UNSPLASH.format("1600857544200-b2f666a9a2ec", 800, 900),
                "rating": 4.8,
                "review_count": 163,
                "is_best_seller": True,
                "is_new_arrival": True,
            },
        ),
    ],
    testimonials=[
        InsertTestimonial(
            user_name="Sarah J.",
            user_image_url="https://randomuser.me/api/portraits/women/44.jpg",
            rating=5,
            comment=(
                "I've been using the Tranquil Face Serum for three months now, and "
                "my skin has never looked better."
            ),
        ),
        InsertTestimonial(
            user_name="Michael T.",
            user_image_url="https://randomuser.me/api/portraits/men/32.jpg",
            rating=5,
            comment=(
                "The Ultimate Harmony Kit was the perfect gift for my mom. She "
                "loves the entire collection."
            ),
        ),
        InsertTestimonial(
            user_name="Emma R.",
            user_image_url="https://randomuser.me/api/portraits/women/68.jpg",
            rating=4,
            comment=(
                "The Renewal Body Scrub is amazing! It leaves my skin so soft and "
                "the scent is divine."
            ),
        ),
    ],
)

# Sample catalog for freshly created relational/hosted databases. Same
# category names as the memory catalog; 5 of 6 products are featured.
RELATIONAL_CATALOG = SeedCatalog(
    name="relational",
    categories=[
        InsertCategory(
            name="Facial Care",
            description="Products for facial skincare routines",
            image_url="/images/categories/facial-care.jpg",
        ),
        InsertCategory(
            name="Body Rituals",
            description="Luxurious body care products",
            image_url="/images/categories/body-rituals.jpg",
        ),
        InsertCategory(
            name="Aromatherapy",
            description="Essential oils and diffusers",
            image_url="/images/categories/aromatherapy.jpg",
        ),
    ],
    products=[
        (
            "Facial Care",
            {
                "name": "Harmony Facial Cleanser",
                "tagline": "Gentle daily cleanser",
                "description": "A gentle, pH-balanced cleanser that removes impurities.",
                "price": 28.00,
                "image_url": "/images/products/facial-cleanser.jpg",
                "is_featured": True,
            },
        ),
        (
            "Facial Care",
            {
                "name": "Tranquil Face Serum",
                "tagline": "Hydrating and calming",
                "description": "Lightweight serum with hyaluronic acid and botanical extracts.",
                "price": 42.00,
                "image_url": "/images/products/face-serum.jpg",
                "is_featured": True,
            },
        ),
        (
            "Body Rituals",
            {
                "name": "Renewal Body Scrub",
                "tagline": "Exfoliating body treatment",
                "description": "Natural exfoliating scrub that buffs away dull skin cells.",
                "price": 36.00,
                "image_url": "/images/products/body-scrub.jpg",
                "is_featured": True,
                "is_best_seller": True,
            },
        ),
        (
            "Body Rituals",
            {
                "name": "Serene Body Oil",
                "tagline": "Moisturizing body treatment",
                "description": "Rich body oil that leaves skin with a subtle, natural glow.",
                "price": 38.00,
                "image_url": "/images/products/body-oil.jpg",
                "is_featured": True,
            },
        ),
        (
            "Facial Care",
            {
                "name": "Ultimate Harmony Kit",
                "tagline": "Complete skincare routine",
                "description": "Cleanser, toner, serum, and moisturizer in one kit.",
                "price": 120.00,
                "image_url": "/images/products/skincare-kit.jpg",
                "is_featured": True,
            },
        ),
        (
            "Aromatherapy",
            {
                "name": "Calming Lavender Blend",
                "tagline": "Diffuser blend",
                "description": "Lavender, chamomile, and cedarwood for quiet evenings.",
                "price": 22.00,
                "image_url": "/images/products/lavender-blend.jpg",
                "is_new_arrival": True,
            },
        ),
    ],
    testimonials=[
        InsertTestimonial(
            user_name="Sarah J.",
            user_image_url="/images/testimonials/user1.jpg",
            rating=5,
            comment=(
                "The Tranquil Face Serum transformed my skin. After just two "
                "weeks, my complexion is more even."
            ),
        ),
        InsertTestimonial(
            user_name="Michael T.",
            user_image_url="/images/testimonials/user2.jpg",
            rating=5,
            comment=(
                "I was skeptical about natural skincare, but the Renewal Body "
                "Scrub has made me a believer."
            ),
        ),
        InsertTestimonial(
            user_name="Emma R.",
            user_image_url="/images/testimonials/user3.jpg",
            rating=5,
            comment=(
                "The Ultimate Harmony Kit is worth every penny. It's simplified "
                "my routine."
            ),
        ),
    ],
)


def seed_catalog(db: "DbClient", catalog: SeedCatalog) -> None:
    """Insert ``catalog`` into ``db`` through the storage contract."""
    category_ids: dict[str, int] = {}
    for category in catalog.categories:
        created = db.create_category(category)
        category_ids[created.name] = created.id

    for category_name, fields in catalog.products:
        db.create_product(
            InsertProduct(category_id=category_ids[category_name], **fields)
        )

    for testimonial in catalog.testimonials:
        db.create_testimonial(testimonial)

    logger.info(
        "Seeded %s catalog: %d categories, %d products, %d testimonials",
        catalog.name,
        len(catalog.categories),
        len(catalog.products),
        len(catalog.testimonials),
    )
