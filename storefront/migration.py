"""
Copy the fallback catalog into the hosted database and switch to it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from storefront.errors import BackendUnavailable, StorageError
from storefront.fallback import with_fallback
from storefront.tables import (
    CATEGORY_COLUMNS,
    HOSTED_TABLES,
    PRODUCT_COLUMNS,
    TESTIMONIAL_COLUMNS,
    Base,
    to_columns,
)

if TYPE_CHECKING:
    from storefront.db import DbClient, PostgresDbClient
    from storefront.dependencies import StorageSelector
    from storefront.hosted import HostedApi

logger = logging.getLogger(__name__)

MIGRATED_TABLES = ("categories", "products", "testimonials")


def migrate_to_hosted(api: "HostedApi", direct: "PostgresDbClient", source: "DbClient") -> bool:
    """
    Create the hosted tables and upsert the source catalog into them by id.

    Rows that fail on both the hosted API and direct SQL are logged and
    skipped. Returns False only when the tables cannot be created.
    """
    logger.info("Starting migration to hosted database")
    try:
        Base.metadata.create_all(direct.engine, tables=HOSTED_TABLES)
    except SQLAlchemyError:
        logger.exception("Failed to create hosted tables")
        return False

    batches = (
        ("categories", CATEGORY_COLUMNS, source.get_all_categories()),
        ("products", PRODUCT_COLUMNS, source.get_all_products()),
        ("testimonials", TESTIMONIAL_COLUMNS, source.get_all_testimonials()),
    )
    for table, columns, models in batches:
        copied = 0
        for model in models:
            try:
                with_fallback(
                    lambda: api.upsert(table, to_columns(model, columns, mode="json")),
                    lambda: direct.upsert(table, to_columns(model, columns)),
                    operation=f"migrate {table}",
                )
                copied += 1
            except StorageError as exc:
                logger.warning("Failed to migrate %s row %s: %s", table, model.id, exc)
        logger.info("Migrated %d/%d rows into %s", copied, len(models), table)

    try:
        direct.resync_sequences(list(MIGRATED_TABLES))
    except SQLAlchemyError as exc:
        logger.warning("Failed to resync id sequences: %s", exc)

    logger.info("Migration to hosted database completed")
    return True


def switch_to_hosted(selector: "StorageSelector") -> tuple[bool, str]:
    """Migrate the in-memory catalog, then make the hosted backend active."""
    if selector.hosted_factory is None:
        return False, "Hosted backend is not configured"
    try:
        client = selector.hosted_factory()
    except (BackendUnavailable, SQLAlchemyError) as exc:
        logger.error("Could not build hosted backend: %s", exc)
        return False, f"Hosted backend is not available: {exc}"

    if not migrate_to_hosted(client.api, client.direct, selector.memory):
        client.direct.dispose()
        return False, "Migration to hosted database failed"

    client.initialize()
    previous = selector.swap(client)
    logger.info(
        "Switched storage from %s to %s", type(previous).__name__, type(client).__name__
    )
    return True, "Successfully migrated to hosted database"
