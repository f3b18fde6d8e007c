"""Local record store for Connect Vale customers and installations."""

from .config import AppConfig, load_config
from .exceptions import (
    ConflictError,
    IncompatibleVersionError,
    MalformedBackupError,
    NotFoundError,
    StorageError,
    StoreError,
    ValidationError,
)
from .models import Customer, FinancialSummary, ImportResult, Installation, Settings, Snapshot
from .repositories import Database
from .store import DataStore

__all__ = [
    "AppConfig",
    "load_config",
    "DataStore",
    "Database",
    "Customer",
    "Installation",
    "Settings",
    "Snapshot",
    "FinancialSummary",
    "ImportResult",
    "StoreError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "MalformedBackupError",
    "IncompatibleVersionError",
    "StorageError",
]
