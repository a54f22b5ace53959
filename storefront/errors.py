"""
Error taxonomy shared by every storage backend.
"""

from __future__ import annotations

from typing import Any, Optional


class StorageError(Exception):
    """Base class for errors raised at the storage contract boundary."""


class NotFoundError(StorageError):
    """A mutation targeted a row that does not exist."""


class UniquenessViolation(StorageError):
    """A user with the same username or email already exists."""


class ValidationFailure(StorageError):
    """A payload or argument failed validation before reaching a backend."""

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class DanglingReferenceError(StorageError):
    """A cart row points at a product that no longer resolves."""


class BackendUnavailable(StorageError):
    """Neither the primary nor the fallback data path could serve a call."""


class HostedApiError(Exception):
    """
    Error returned by the hosted PostgREST API.

    Not a StorageError: the hosted backend recovers from these locally.
    """

    NOT_FOUND_CODE = "PGRST116"
    UNIQUE_VIOLATION_CODE = "23505"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    @property
    def is_not_found(self) -> bool:
        return self.code == self.NOT_FOUND_CODE

    @property
    def is_unique_violation(self) -> bool:
        return self.code == self.UNIQUE_VIOLATION_CODE
