"""
Primary -> fallback -> final fallback execution for the hosted backend.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from storefront.errors import BackendUnavailable, HostedApiError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING: Any = object()


def with_fallback(
    primary: Callable[[], T],
    fallback: Callable[[], T],
    *,
    operation: str,
    not_found: Any = _MISSING,
) -> T:
    """
    Run ``primary`` (hosted API); on failure run ``fallback`` (direct SQL),
    retrying it once more if it also fails.

    A hosted "row not found" error returns ``not_found`` when one is given.
    Domain errors (any StorageError) propagate from every stage untouched.
    When both paths are exhausted a BackendUnavailable carrying the last
    cause is raised.
    """
    try:
        return primary()
    except StorageError:
        raise
    except HostedApiError as exc:
        if exc.is_not_found and not_found is not _MISSING:
            return not_found
        logger.debug("Hosted API %s failed (%s); using direct SQL", operation, exc)
    except Exception as exc:
        logger.debug("Hosted path for %s raised %r; using direct SQL", operation, exc)

    try:
        return fallback()
    except StorageError:
        raise
    except Exception as exc:
        logger.warning("Direct SQL %s failed (%s); retrying once", operation, exc)

    try:
        return fallback()
    except StorageError:
        raise
    except Exception as exc:
        raise BackendUnavailable(
            f"{operation} failed on hosted API and direct SQL: {exc}"
        ) from exc
