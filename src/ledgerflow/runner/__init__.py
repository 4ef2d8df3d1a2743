"""
CLI runner module.

Provides commands:
- parse: Parse a QIF/CSV/statement file
- import: Import a file into the ledger
- delete: Delete a transaction with its import history
- transfers: Transfer report, link and unlink
- rates: Exchange rates and conversion
- budget: Budgets and progress
- status: Ledger statistics
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
