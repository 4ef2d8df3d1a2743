"""Import of parsed transactions into the ledger.

Flow for one batch:
1. Load the import history hashes for (user, source)
2. Hold back duplicates (history and in-batch repeats)
3. Suggest a category for each new record
4. Write each transaction together with its import record

QIF imports additionally map QIF accounts to ledger accounts, assign the
transfer categories, and create the counterpart of a transfer between two
mapped accounts.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from ..matching.category_matcher import CategoryMatcher, match_category_by_name
from ..parsers.qif_parser import QIF_SOURCE, QIFParseResult
from ..schemas.dedupe import paired_hash
from ..schemas.transaction import (
    Category,
    NewTransaction,
    ParsedTransaction,
    SystemCategory,
    TransactionType,
)
from ..state_store.sqlite_store import DuplicateImportError, LedgerStoreError
from .duplicate_filter import DuplicateFilter, DuplicateMatch

if TYPE_CHECKING:
    from ..currency.converter import CurrencyConverter
    from ..state_store import LedgerStore

logger = logging.getLogger(__name__)

NO_DESCRIPTION = "No description"

# Errors that fail a single record without aborting the batch
RECORD_WRITE_ERRORS = (LedgerStoreError, sqlite3.Error, ValueError)


@dataclass
class ImportResult:
    """Counters and details of one import call."""

    imported: int = 0
    duplicates: int = 0
    failed: int = 0
    paired_created: int = 0
    duplicate_details: list[DuplicateMatch] = field(default_factory=list)
    transaction_ids: list[int] = field(default_factory=list)
    skipped_accounts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.imported + self.duplicates + self.failed

    def merge(self, other: ImportResult) -> None:
        self.imported += other.imported
        self.duplicates += other.duplicates
        self.failed += other.failed
        self.paired_created += other.paired_created
        self.duplicate_details.extend(other.duplicate_details)
        self.transaction_ids.extend(other.transaction_ids)
        self.skipped_accounts.extend(other.skipped_accounts)
        self.errors.extend(other.errors)


@dataclass
class CleanupWarning:
    """Import history could not be removed after a transaction was deleted."""

    transaction_id: int
    message: str

    def __str__(self) -> str:
        return f"Import record cleanup failed for transaction {self.transaction_id}: {self.message}"


@dataclass
class DeleteResult:
    """Outcome of deleting a transaction."""

    transaction_id: int
    deleted: bool
    import_records_removed: int = 0
    cleanup_warning: CleanupWarning | None = None


@dataclass
class AccountTarget:
    """Ledger account a QIF account is imported into."""

    account_id: str
    currency: str


class ImportService:
    """
    Writes parsed transactions into the ledger store.

    Usage:
        service = ImportService(store)
        result = service.import_transactions(user_id, "card", "monobank", parsed)
    """

    def __init__(
        self,
        store: LedgerStore,
        matcher: CategoryMatcher | None = None,
        converter: CurrencyConverter | None = None,
        base_currency: str | None = None,
        in_batch_dedup: bool = True,
    ):
        """
        Args:
            store: Ledger store
            matcher: Category matcher (default thresholds when omitted)
            converter: When given with base_currency, each new transaction
                records the base-currency rate at creation time
            base_currency: User's settlement currency
            in_batch_dedup: Treat repeated hashes inside one batch as duplicates
        """
        self.store = store
        self.matcher = matcher or CategoryMatcher()
        self.converter = converter
        self.base_currency = base_currency
        self.in_batch_dedup = in_batch_dedup

    def _capture_rate(self, currency: str) -> Decimal | None:
        """Base-currency units per 1 `currency`, or None when not tracked."""
        if self.converter is None or not self.base_currency:
            return None
        try:
            return self.converter.get_exchange_rate(currency, self.base_currency)
        except ValueError as e:
            logger.warning(f"No exchange rate recorded for {currency}: {e}")
            return None

    def _write(
        self, user_id: str, new: NewTransaction, hash: str, source: str, result: ImportResult
    ) -> int | None:
        """Create one transaction with its import record, updating counters."""
        try:
            txn = self.store.create_imported_transaction(user_id, new, hash=hash, source=source)
        except DuplicateImportError:
            # Another import recorded the hash after our history snapshot
            logger.info(f"Hash {hash} recorded concurrently, counting as duplicate")
            result.duplicates += 1
            return None
        except RECORD_WRITE_ERRORS as e:
            logger.error(f"Failed to import '{new.description}' ({hash}): {e}")
            result.failed += 1
            result.errors.append(f"{hash}: {e}")
            return None

        result.imported += 1
        result.transaction_ids.append(txn.id)
        return txn.id

    def import_transactions(
        self,
        user_id: str,
        account_id: str,
        source: str,
        parsed: list[ParsedTransaction],
        auto_categorize: bool = True,
    ) -> ImportResult:
        """
        Import parsed transactions into one account.

        Args:
            user_id: Owner
            account_id: Target ledger account
            source: Import-history source name (parser source)
            parsed: Parser output
            auto_categorize: Suggest categories from history and names

        Returns:
            ImportResult with imported/duplicate/failed counts
        """
        result = ImportResult()
        dup_filter = DuplicateFilter(
            self.store.get_imported_hashes(user_id, source), in_batch=self.in_batch_dedup
        )

        categories: list[Category] = []
        history = []
        if auto_categorize:
            categories = self.store.list_categories(user_id)
            history = [t for t in self.store.get_transactions(user_id) if t.category_id]

        for txn in parsed:
            reason = dup_filter.check(txn)
            if reason is not None:
                result.duplicates += 1
                result.duplicate_details.append(DuplicateMatch(txn, reason))
                continue

            category_id = None
            if auto_categorize:
                category_id = self.matcher.suggest(txn.description, txn.type, categories, history)

            new = NewTransaction(
                account_id=account_id,
                amount=txn.amount,
                currency=txn.currency,
                type=txn.type,
                description=txn.description,
                date=txn.date,
                category_id=category_id,
                merchant_name=txn.description,
                exchange_rate=self._capture_rate(txn.currency),
            )
            if self._write(user_id, new, txn.hash, source, result) is not None:
                dup_filter.mark_imported(txn.hash)

        logger.info(
            f"Import {source}: {result.imported} imported, "
            f"{result.duplicates} duplicates, {result.failed} failed"
        )
        return result

    def import_qif(
        self,
        user_id: str,
        qif: QIFParseResult,
        account_map: dict[str, tuple[str, str]],
        auto_categorize: bool = True,
    ) -> ImportResult:
        """
        Import a parsed QIF file.

        Args:
            user_id: Owner
            qif: Parsed QIF file
            account_map: QIF account name -> (ledger account id, currency).
                Accounts missing from the map are skipped.
            auto_categorize: Match QIF category names to ledger categories

        Returns:
            ImportResult; `imported` counts source-side transactions only,
            auto-created counterparts are counted in `paired_created`
        """
        targets = {
            name: AccountTarget(account_id=account_id, currency=currency)
            for name, (account_id, currency) in account_map.items()
        }
        result = ImportResult()
        dup_filter = DuplicateFilter(
            self.store.get_imported_hashes(user_id, QIF_SOURCE), in_batch=self.in_batch_dedup
        )

        categories = self.store.list_categories(user_id)
        transfer_out = self.store.get_system_category(user_id, SystemCategory.TRANSFER_OUT)
        transfer_in = self.store.get_system_category(user_id, SystemCategory.TRANSFER_IN)

        for account_data in qif.accounts:
            qif_name = account_data.account.name
            target = targets.get(qif_name)
            if target is None:
                logger.info(f"QIF account '{qif_name}' is not mapped, skipping")
                result.skipped_accounts.append(qif_name)
                continue

            for txn in account_data.transactions:
                reason = dup_filter.check(txn)
                if reason is not None:
                    result.duplicates += 1
                    result.duplicate_details.append(DuplicateMatch(txn, reason))
                    continue

                if txn.is_transfer and txn.transfer_account:
                    category_id = transfer_out.id if txn.type == TransactionType.EXPENSE else transfer_in.id
                    prefix = "To" if txn.type == TransactionType.EXPENSE else "From"
                    description = f"{prefix} {txn.transfer_account}"
                else:
                    category_id = None
                    if auto_categorize and txn.category:
                        category_id = match_category_by_name(
                            txn.category, categories, txn.type, self.matcher.name_threshold
                        )
                    description = txn.memo
                    if not description:
                        category = next((c for c in categories if c.id == category_id), None)
                        description = (category.name if category else "") or txn.category or NO_DESCRIPTION

                counterpart = targets.get(txn.transfer_account) if txn.is_transfer else None
                counterpart_hash = paired_hash(txn.hash)
                create_counterpart = counterpart is not None and counterpart_hash not in dup_filter.known_hashes
                pair_id = uuid.uuid4().hex if create_counterpart else None

                new = NewTransaction(
                    account_id=target.account_id,
                    amount=txn.amount,
                    currency=target.currency,
                    type=txn.type,
                    description=description,
                    date=txn.date,
                    category_id=category_id,
                    merchant_name=txn.memo or description,
                    pair_id=pair_id,
                    exchange_rate=self._capture_rate(target.currency),
                )
                transaction_id = self._write(user_id, new, txn.hash, QIF_SOURCE, result)
                if transaction_id is None:
                    continue
                dup_filter.mark_imported(txn.hash)

                if create_counterpart:
                    self._create_counterpart(
                        user_id,
                        txn,
                        source_account=qif_name,
                        source_transaction_id=transaction_id,
                        target=counterpart,
                        category_id=transfer_in.id if txn.type == TransactionType.EXPENSE else transfer_out.id,
                        pair_id=pair_id,
                        dup_filter=dup_filter,
                        result=result,
                    )

        logger.info(
            f"QIF import: {result.imported} imported, {result.paired_created} counterparts, "
            f"{result.duplicates} duplicates, {result.failed} failed"
        )
        return result

    def _create_counterpart(
        self,
        user_id: str,
        txn: ParsedTransaction,
        source_account: str,
        source_transaction_id: int,
        target: AccountTarget,
        category_id: int,
        pair_id: str,
        dup_filter: DuplicateFilter,
        result: ImportResult,
    ) -> None:
        """Create the opposite half of a QIF transfer in the mapped target account."""
        description = (
            f"From {source_account}" if txn.type == TransactionType.EXPENSE else f"To {source_account}"
        )
        counterpart_hash = paired_hash(txn.hash)
        new = NewTransaction(
            account_id=target.account_id,
            amount=txn.amount,
            currency=target.currency,
            type=txn.type.opposite,
            description=description,
            date=txn.date,
            category_id=category_id,
            merchant_name=description,
            pair_id=pair_id,
            exchange_rate=self._capture_rate(target.currency),
        )

        try:
            self.store.create_imported_transaction(
                user_id, new, hash=counterpart_hash, source=QIF_SOURCE
            )
        except RECORD_WRITE_ERRORS as e:
            logger.warning(f"Counterpart for {txn.hash} not created: {e}")
            result.errors.append(f"{counterpart_hash}: {e}")
            # Leave no half-linked transaction behind
            try:
                self.store.update_transaction(user_id, source_transaction_id, {"pair_id": None})
            except RECORD_WRITE_ERRORS as unlink_error:
                logger.error(
                    f"Transaction {source_transaction_id} left with dangling pair_id "
                    f"{pair_id}: {unlink_error}"
                )
                result.errors.append(f"{txn.hash}: pair_id not cleared: {unlink_error}")
            return

        dup_filter.mark_imported(counterpart_hash)
        result.paired_created += 1

    def delete_transaction(self, user_id: str, transaction_id: int) -> DeleteResult:
        """
        Delete a transaction and then its import history.

        A failure to remove the history is reported as a CleanupWarning and
        never fails the deletion itself.
        """
        deleted = self.store.delete_transaction(user_id, transaction_id)
        outcome = DeleteResult(transaction_id=transaction_id, deleted=deleted)
        if not deleted:
            return outcome

        try:
            outcome.import_records_removed = self.store.delete_import_record(user_id, transaction_id)
        except (LedgerStoreError, sqlite3.Error) as e:
            outcome.cleanup_warning = CleanupWarning(transaction_id, str(e))
            logger.warning(str(outcome.cleanup_warning))

        return outcome
