"""
SSOT (Single Source of Truth) schemas for the engine.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .budget import Budget, BudgetPeriod, BudgetProgress
from .dedupe import (
    PAIRED_HASH_SUFFIX,
    QIF_HASH_PREFIX,
    DateComponents,
    compute_content_hash,
    compute_qif_hash,
    extract_date_components,
    format_amount,
    format_date_components,
    format_date_for_hash,
    is_qif_hash,
    paired_hash,
    rolling_hash,
)
from .transaction import (
    DEFAULT_CATEGORIES,
    SYSTEM_CATEGORY_NAMES,
    Category,
    ImportRecord,
    LedgerTransaction,
    NewTransaction,
    ParsedTransaction,
    SystemCategory,
    TransactionType,
)

__all__ = [
    # Transactions (canonical shapes)
    "ParsedTransaction",
    "LedgerTransaction",
    "NewTransaction",
    "ImportRecord",
    "Category",
    "TransactionType",
    "SystemCategory",
    "SYSTEM_CATEGORY_NAMES",
    "DEFAULT_CATEGORIES",
    # Budgets
    "Budget",
    "BudgetPeriod",
    "BudgetProgress",
    # Dedupe (SSOT hash functions)
    "DateComponents",
    "extract_date_components",
    "format_date_components",
    "format_date_for_hash",
    "format_amount",
    "rolling_hash",
    "compute_content_hash",
    "compute_qif_hash",
    "paired_hash",
    "is_qif_hash",
    "QIF_HASH_PREFIX",
    "PAIRED_HASH_SUFFIX",
]
