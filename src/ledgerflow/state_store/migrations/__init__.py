"""
Database migrations module.

Versioned, ordered migrations for the SQLite ledger store, tracked in a
`migrations` table.
"""

from .runner import Migration, MigrationError, MigrationRunner, get_all_migrations

__all__ = ["Migration", "MigrationError", "MigrationRunner", "get_all_migrations"]
