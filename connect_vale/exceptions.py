"""Errors raised by the Connect Vale record store."""
from __future__ import annotations

from typing import Iterable, Optional


class StoreError(Exception):
    """Base class for every error the store surfaces to its caller."""


class ValidationError(StoreError):
    """One or more fields are missing or hold a value outside their catalog."""

    def __init__(self, fields: Iterable[str], message: Optional[str] = None):
        self.fields = list(fields)
        super().__init__(message or f"Missing or invalid fields: {', '.join(self.fields)}")


class ConflictError(StoreError):
    """A uniqueness rule or a reference count blocks the operation."""

    def __init__(self, message: str, *, count: Optional[int] = None):
        self.count = count
        super().__init__(message)


class NotFoundError(StoreError):
    def __init__(self, entity: str, record_id: object):
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} {record_id} not found")


class MalformedBackupError(StoreError):
    """The backup payload is missing required sections or holds broken records."""


class IncompatibleVersionError(StoreError):
    def __init__(self, found: object, expected: str):
        self.found = found
        self.expected = expected
        super().__init__(f"Incompatible backup version {found!r}; expected {expected!r}")


class StorageError(StoreError):
    """The underlying SQLite engine failed (locked, full, corrupt)."""
