"""
Delete expired rows from the relational session store.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from storefront.config import get_settings
from storefront.db import build_engine
from storefront.sessions import PostgresSessionStore

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Prune expired sessions")
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Override DATABASE_URL",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")

    settings = get_settings()
    database_url = args.database_url or settings.database_url
    if not database_url:
        logger.error("DATABASE_URL is not set")
        return 1

    engine = build_engine(
        database_url,
        connect_timeout=settings.db_connect_timeout_seconds,
        statement_timeout_ms=settings.db_statement_timeout_ms,
    )
    try:
        store = PostgresSessionStore(engine, create_table_if_missing=False)
        removed = store.prune_expired()
        logger.info("Removed %d expired sessions", removed)
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
