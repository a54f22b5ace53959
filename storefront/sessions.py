"""
Session stores used by the login routes.

Each storage backend owns one: the in-memory backend keeps sessions in a
dict, the relational backends persist them in the ``sessions`` table and
reap expired rows themselves.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from storefront.tables import SessionRow

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 7 * 24 * 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore(Protocol):
    """Interface for server-side session persistence."""

    def get(self, sid: str) -> Optional[dict]:
        ...

    def set(self, sid: str, sess: dict, max_age: Optional[int] = None) -> None:
        ...

    def touch(self, sid: str, max_age: Optional[int] = None) -> None:
        ...

    def destroy(self, sid: str) -> None:
        ...

    def prune_expired(self) -> int:
        ...


class InMemorySessionStore:
    """Process-local session store for the in-memory backend and tests."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self.sessions: Dict[str, tuple[dict, datetime]] = {}
        self._lock = threading.Lock()

    def get(self, sid: str) -> Optional[dict]:
        entry = self.sessions.get(sid)
        if not entry:
            return None
        sess, expire = entry
        if expire <= _utcnow():
            return None
        return dict(sess)

    def set(self, sid: str, sess: dict, max_age: Optional[int] = None) -> None:
        expire = _utcnow() + timedelta(seconds=max_age or self.ttl_seconds)
        with self._lock:
            self.sessions[sid] = (dict(sess), expire)

    def touch(self, sid: str, max_age: Optional[int] = None) -> None:
        with self._lock:
            entry = self.sessions.get(sid)
            if entry:
                expire = _utcnow() + timedelta(seconds=max_age or self.ttl_seconds)
                self.sessions[sid] = (entry[0], expire)

    def destroy(self, sid: str) -> None:
        with self._lock:
            self.sessions.pop(sid, None)

    def prune_expired(self) -> int:
        now = _utcnow()
        with self._lock:
            expired = [sid for sid, (_, expire) in self.sessions.items() if expire <= now]
            for sid in expired:
                del self.sessions[sid]
        return len(expired)


class PostgresSessionStore:
    """
    SQLAlchemy-backed session store on the ``sessions`` table.

    Expired rows are ignored on read and reaped from ``set`` at most once per
    ``prune_interval_seconds``.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        prune_interval_seconds: float = 900,
        create_table_if_missing: bool = True,
    ):
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self.prune_interval_seconds = prune_interval_seconds
        self.Session = sessionmaker(
            bind=engine, class_=Session, expire_on_commit=False, future=True
        )
        self._last_pruned = time.monotonic()
        if create_table_if_missing:
            SessionRow.__table__.create(engine, checkfirst=True)

    def get(self, sid: str) -> Optional[dict]:
        with self.Session() as session:
            stmt = select(SessionRow.sess).where(
                SessionRow.sid == sid, SessionRow.expire > _utcnow()
            )
            sess: Any = session.execute(stmt).scalar_one_or_none()
            return dict(sess) if sess is not None else None

    def set(self, sid: str, sess: dict, max_age: Optional[int] = None) -> None:
        expire = _utcnow() + timedelta(seconds=max_age or self.ttl_seconds)
        with self.Session() as session:
            session.merge(SessionRow(sid=sid, sess=dict(sess), expire=expire))
            session.commit()
        self._maybe_prune()

    def touch(self, sid: str, max_age: Optional[int] = None) -> None:
        expire = _utcnow() + timedelta(seconds=max_age or self.ttl_seconds)
        with self.Session() as session:
            session.execute(
                update(SessionRow).where(SessionRow.sid == sid).values(expire=expire)
            )
            session.commit()

    def destroy(self, sid: str) -> None:
        with self.Session() as session:
            session.execute(delete(SessionRow).where(SessionRow.sid == sid))
            session.commit()

    def prune_expired(self) -> int:
        with self.Session() as session:
            result = session.execute(
                delete(SessionRow).where(SessionRow.expire <= _utcnow())
            )
            session.commit()
        self._last_pruned = time.monotonic()
        removed = result.rowcount or 0
        if removed:
            logger.info("Pruned %d expired sessions", removed)
        return removed

    def _maybe_prune(self) -> None:
        if time.monotonic() - self._last_pruned < self.prune_interval_seconds:
            return
        try:
            self.prune_expired()
        except Exception:
            logger.exception("Failed to prune expired sessions")
