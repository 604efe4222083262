"""Services package."""

from fluid_budget.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    NotFoundError,
    SQLiteAuditStorage,
    SQLiteBudgetStorage,
    SQLiteClient,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryBudgetStorage",
    "NotFoundError",
    "SQLiteAuditStorage",
    "SQLiteBudgetStorage",
    "SQLiteClient",
    "StorageConnectionError",
    "StorageError",
]
