"""
Storage selection and dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
import threading
from functools import partial
from typing import Any, Callable, Optional

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from storefront.config import Settings
from storefront.db import DbClient, InMemoryDbClient, PostgresDbClient
from storefront.errors import BackendUnavailable
from storefront.hosted import SupabaseDbClient, SupabaseHostedApi
from storefront.sessions import SessionStore

logger = logging.getLogger(__name__)


def build_postgres_client(
    settings: Settings, *, database_url: Optional[str] = None, **kwargs: Any
) -> PostgresDbClient:
    return PostgresDbClient(
        database_url or settings.database_url,
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout_seconds,
        connect_timeout=settings.db_connect_timeout_seconds,
        statement_timeout_ms=settings.db_statement_timeout_ms,
        session_ttl_seconds=settings.session_ttl_seconds,
        session_prune_interval_seconds=settings.session_prune_interval_seconds,
        **kwargs,
    )


def build_hosted_client(settings: Settings, source: DbClient) -> SupabaseDbClient:
    """Build (but do not initialize) the hosted backend; ``source`` feeds its migration."""
    api = SupabaseHostedApi(
        settings.supabase_url,
        settings.supabase_key,
        timeout=settings.hosted_timeout_seconds,
    )
    direct = build_postgres_client(
        settings,
        database_url=settings.hosted_database_url,
        create_schema=False,
        seed=False,
    )
    return SupabaseDbClient(api, direct, migration_source=source)


class StorageSelector:
    """
    Holds the active storage backend.

    ``swap`` is the only way to change it. Requests already holding the
    previous backend finish against it.
    """

    def __init__(
        self,
        current: DbClient,
        *,
        memory: Optional[InMemoryDbClient] = None,
        hosted_factory: Optional[Callable[[], SupabaseDbClient]] = None,
    ):
        if memory is None:
            memory = current if isinstance(current, InMemoryDbClient) else InMemoryDbClient()
        self.memory = memory
        self.hosted_factory = hosted_factory
        self._current = current
        self._lock = threading.Lock()

    @property
    def current(self) -> DbClient:
        return self._current

    def swap(self, new: DbClient) -> DbClient:
        with self._lock:
            previous, self._current = self._current, new
        return previous

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageSelector":
        """
        Pick the startup backend: hosted (when requested), then relational,
        then the seeded in-memory store.
        """
        memory = InMemoryDbClient()
        hosted_factory = partial(build_hosted_client, settings, memory)

        if settings.use_in_memory_backends or settings.storage_backend == "memory":
            logger.info("Using in-memory storage")
            return cls(memory, memory=memory, hosted_factory=hosted_factory)

        def build_hosted() -> SupabaseDbClient:
            client = hosted_factory()
            client.initialize()
            return client

        candidates: list[tuple[str, Callable[[], DbClient]]] = []
        if settings.storage_backend == "supabase":
            candidates.append(("hosted", build_hosted))
        candidates.append(("relational", partial(build_postgres_client, settings)))

        for name, build in candidates:
            try:
                client = build()
            except (BackendUnavailable, SQLAlchemyError) as exc:
                logger.warning("%s storage unavailable: %s", name.capitalize(), exc)
                continue
            logger.info("Using %s storage (%s)", name, type(client).__name__)
            return cls(client, memory=memory, hosted_factory=hosted_factory)

        logger.warning("Falling back to in-memory storage")
        return cls(memory, memory=memory, hosted_factory=hosted_factory)


def get_storage_selector(request: Request) -> StorageSelector:
    return request.app.state.storage


def get_db_client(selector: StorageSelector = Depends(get_storage_selector)) -> DbClient:
    return selector.current


def get_session_store(db: DbClient = Depends(get_db_client)) -> SessionStore:
    return db.session_store
