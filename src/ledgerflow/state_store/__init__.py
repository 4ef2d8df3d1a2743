"""
Ledger Store (SQLite-based).

Persistent storage for:
- Ledger transactions
- Categories (with reserved transfer categories)
- Import history, unique per (user, source, hash)
- Budgets
"""

from .sqlite_store import (
    DuplicateImportError,
    LedgerStore,
    LedgerStoreError,
    SystemCategoryError,
)

__all__ = [
    "LedgerStore",
    "LedgerStoreError",
    "DuplicateImportError",
    "SystemCategoryError",
]
