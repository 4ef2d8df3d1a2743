"""Duplicate detection for import batches.

A parsed transaction is a duplicate when its content hash is already recorded
in the import history for the same (user, source), or when an earlier record of
the same batch carried the same hash.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from ..schemas.transaction import ParsedTransaction

logger = logging.getLogger(__name__)


class DuplicateReason(str, Enum):
    """Why a record was held back."""

    HISTORY = "history"  # Hash already imported
    BATCH = "batch"  # Hash repeated inside the batch


@dataclass
class DuplicateMatch:
    """A record skipped as a duplicate."""

    transaction: ParsedTransaction
    reason: DuplicateReason

    @property
    def hash(self) -> str:
        return self.transaction.hash


@dataclass
class FilterResult:
    """Batch split into records to write and duplicates to skip."""

    new: list[ParsedTransaction] = field(default_factory=list)
    duplicates: list[DuplicateMatch] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)


class DuplicateFilter:
    """
    Tracks hashes seen so far for one (user, source).

    Usage:
        dup_filter = DuplicateFilter(store.get_imported_hashes(user_id, source))
        result = dup_filter.partition(parsed)
    """

    def __init__(self, known_hashes: Iterable[str] = (), in_batch: bool = True):
        """
        Args:
            known_hashes: Hashes already present in the import history
            in_batch: Also treat repeats within the batch as duplicates
        """
        self.known_hashes = set(known_hashes)
        self.in_batch = in_batch
        self._batch_hashes: set[str] = set()

    def check(self, txn: ParsedTransaction) -> DuplicateReason | None:
        """Return why `txn` is a duplicate, or None. Records its hash when new."""
        if self.in_batch and txn.hash in self._batch_hashes:
            return DuplicateReason.BATCH
        if txn.hash in self.known_hashes:
            return DuplicateReason.HISTORY
        if self.in_batch:
            self._batch_hashes.add(txn.hash)
        return None

    def mark_imported(self, hash: str) -> None:
        """Record a hash written during this batch."""
        self.known_hashes.add(hash)

    def partition(self, transactions: Iterable[ParsedTransaction]) -> FilterResult:
        """Split transactions into new ones and duplicates, preserving order."""
        result = FilterResult()
        for txn in transactions:
            reason = self.check(txn)
            if reason is None:
                result.new.append(txn)
            else:
                result.duplicates.append(DuplicateMatch(txn, reason))

        if result.duplicates:
            logger.info(
                f"Duplicate filter: {len(result.new)} new, {len(result.duplicates)} duplicates"
            )
        return result


def filter_duplicates(
    transactions: Iterable[ParsedTransaction],
    known_hashes: Iterable[str],
    in_batch: bool = True,
) -> FilterResult:
    """One-shot partition of a batch against known hashes."""
    return DuplicateFilter(known_hashes, in_batch=in_batch).partition(transactions)
