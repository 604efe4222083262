"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ships an in-memory backend (tests, local runs) and a SQLite backend.
"""

from fluid_budget.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateError,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)
from fluid_budget.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
)
from fluid_budget.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteBudgetStorage,
    SQLiteClient,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetStorageInterface",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBudgetStorage",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteBudgetStorage",
    "SQLiteClient",
]
