"""
Copy the fallback catalog into the configured Supabase database.
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
from storefront.db import InMemoryDbClient
from storefront.dependencies import build_hosted_client
from storefront.errors import BackendUnavailable
from storefront.migration import migrate_to_hosted

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Migrate the catalog to Supabase")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report how many rows would be copied",
    )
    parser.add_argument(
        "--skip-verify",
        action="store_true",
        help="Do not probe the hosted API after migrating",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")

    source = InMemoryDbClient()
    if args.dry_run:
        logger.info(
            "Would migrate %d categories, %d products, %d testimonials",
            len(source.get_all_categories()),
            len(source.get_all_products()),
            len(source.get_all_testimonials()),
        )
        return 0

    try:
        client = build_hosted_client(get_settings(), source)
    except BackendUnavailable as exc:
        logger.error("Hosted backend is not configured: %s", exc)
        return 1

    try:
        if not migrate_to_hosted(client.api, client.direct, source):
            logger.error("Migration failed")
            return 1
        if not args.skip_verify:
            client.initialize()
            if not client.hosted_ready:
                logger.warning("Hosted API cannot see the tables yet; direct SQL will be used")
    finally:
        client.direct.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
