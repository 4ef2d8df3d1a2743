"""
Bank export → Canonical transactions → Dedup / Categorize → Ledger

A deterministic, testable engine that parses transaction exports (QIF, bank CSV,
statement PDFs), deduplicates them against import history, suggests categories,
converts currencies and reconciles transfers between a user's own accounts.
"""

__version__ = "0.1.0"
