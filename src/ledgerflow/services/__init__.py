"""Ledger services: import, duplicate filtering, budgets and transfers."""

from ledgerflow.services.budget_progress import BudgetProgressService, calculate_budget_progress
from ledgerflow.services.duplicate_filter import DuplicateFilter, filter_duplicates
from ledgerflow.services.importer import CleanupWarning, ImportResult, ImportService
from ledgerflow.services.transfers import (
    LinkConsistencyError,
    TransferError,
    TransferLinkError,
    TransferReconciler,
)

__all__ = [
    "ImportService",
    "ImportResult",
    "CleanupWarning",
    "DuplicateFilter",
    "filter_duplicates",
    "BudgetProgressService",
    "calculate_budget_progress",
    "TransferReconciler",
    "TransferError",
    "TransferLinkError",
    "LinkConsistencyError",
]
