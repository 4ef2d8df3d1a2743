"""Tests for the import service (CSV/statement batches, QIF, deletion)."""

import sqlite3
from decimal import Decimal

import pytest

from ledgerflow.matching.category_matcher import CategoryMatcher
from ledgerflow.parsers.csv_parser import DelimitedTextParser
from ledgerflow.parsers.qif_parser import QIF_SOURCE, QIFParser
from ledgerflow.schemas.dedupe import paired_hash
from ledgerflow.schemas.transaction import NewTransaction, TransactionType
from ledgerflow.services.duplicate_filter import DuplicateReason
from ledgerflow.services.importer import ImportResult, ImportService

USER = "user-1"

QIF_ACCOUNTS = {"Checking": ("checking", "EUR"), "Savings": ("savings", "EUR")}


@pytest.fixture
def seeded_store(store):
    store.ensure_default_categories(USER)
    return store


@pytest.fixture
def csv_transactions(sample_csv):
    return DelimitedTextParser().parse(sample_csv)


@pytest.fixture
def qif_result(sample_qif):
    return QIFParser().parse_qif(sample_qif)


def category_id(store, name: str) -> int:
    return store.get_category_by_name(USER, name).id


class TestImportTransactions:
    """Tests for single-account imports."""

    def test_import_creates_transactions(self, seeded_store, csv_transactions):
        service = ImportService(seeded_store)
        result = service.import_transactions(USER, "card", "monobank", csv_transactions)

        assert result.imported == 2
        assert result.duplicates == 0
        assert result.failed == 0
        assert len(result.transaction_ids) == 2

        stored = seeded_store.get_transactions(USER)
        assert [t.description for t in stored] == ["COFFEE SHOP", "Salary March"]
        assert stored[0].account_id == "card"
        assert stored[0].merchant_name == "COFFEE SHOP"
        assert stored[0].amount == Decimal("120.50")
        assert seeded_store.get_import_record(USER, stored[0].id).hash == csv_transactions[0].hash

    def test_reimport_is_idempotent(self, seeded_store, csv_transactions):
        service = ImportService(seeded_store)
        service.import_transactions(USER, "card", "monobank", csv_transactions)
        second = service.import_transactions(USER, "card", "monobank", csv_transactions)

        assert second.imported == 0
        assert second.duplicates == 2
        assert all(d.reason is DuplicateReason.HISTORY for d in second.duplicate_details)
        assert len(seeded_store.get_transactions(USER)) == 2

    def test_same_hash_other_source_imported(self, seeded_store, csv_transactions):
        service = ImportService(seeded_store)
        service.import_transactions(USER, "card", "monobank", csv_transactions)
        result = service.import_transactions(USER, "card", "other-bank", csv_transactions)

        assert result.imported == 2

    def test_in_batch_duplicates(self, seeded_store, csv_transactions):
        batch = [csv_transactions[0], csv_transactions[0], csv_transactions[1]]
        result = ImportService(seeded_store).import_transactions(USER, "card", "monobank", batch)

        assert result.imported == 2
        assert result.duplicates == 1
        assert result.duplicate_details[0].reason is DuplicateReason.BATCH
        assert result.total == 3

    def test_concurrent_import_counted_as_duplicate(self, seeded_store, csv_transactions, monkeypatch):
        """A hash recorded after the history snapshot is a duplicate, not a failure."""
        service = ImportService(seeded_store)
        service.import_transactions(USER, "card", "monobank", csv_transactions)
        monkeypatch.setattr(seeded_store, "get_imported_hashes", lambda user_id, source: set())

        result = service.import_transactions(USER, "card", "monobank", csv_transactions)

        assert result.imported == 0
        assert result.duplicates == 2
        assert result.failed == 0
        assert len(seeded_store.get_transactions(USER)) == 2

    def test_write_failure_does_not_abort_batch(self, seeded_store, csv_transactions, monkeypatch):
        original = seeded_store.create_imported_transaction

        def flaky(user_id, new: NewTransaction, hash, source):
            if new.description == "COFFEE SHOP":
                raise sqlite3.OperationalError("database is locked")
            return original(user_id, new, hash=hash, source=source)

        monkeypatch.setattr(seeded_store, "create_imported_transaction", flaky)
        result = ImportService(seeded_store).import_transactions(
            USER, "card", "monobank", csv_transactions
        )

        assert result.imported == 1
        assert result.failed == 1
        assert "database is locked" in result.errors[0]

    def test_auto_categorize_from_history_and_names(self, seeded_store, csv_transactions):
        restaurants = category_id(seeded_store, "Restaurants")
        seeded_store.create_transaction(
            USER,
            NewTransaction(
                account_id="card",
                amount=Decimal("80"),
                currency="UAH",
                type=TransactionType.EXPENSE,
                description="Coffee Shop",
                date=csv_transactions[0].date.replace(month=1),
                category_id=restaurants,
            ),
        )

        ImportService(seeded_store).import_transactions(USER, "card", "monobank", csv_transactions)
        imported = {t.description: t for t in seeded_store.get_transactions(USER, account_id="card")}

        assert imported["COFFEE SHOP"].category_id == restaurants
        assert imported["Salary March"].category_id == category_id(seeded_store, "Salary")

    def test_auto_categorize_disabled(self, seeded_store, csv_transactions):
        ImportService(seeded_store).import_transactions(
            USER, "card", "monobank", csv_transactions, auto_categorize=False
        )
        assert all(t.category_id is None for t in seeded_store.get_transactions(USER))

    def test_matcher_thresholds_used(self, seeded_store, csv_transactions):
        matcher = CategoryMatcher(name_threshold=1.0, history_threshold=1.0)
        ImportService(seeded_store, matcher=matcher).import_transactions(
            USER, "card", "monobank", csv_transactions
        )
        salary = seeded_store.get_transactions(USER, type=TransactionType.INCOME)[0]
        # Containment score 1.0 still reaches a threshold of 1.0
        assert salary.category_id == category_id(seeded_store, "Salary")

    def test_exchange_rate_captured(self, seeded_store, csv_transactions, converter):
        service = ImportService(seeded_store, converter=converter, base_currency="USD")
        service.import_transactions(USER, "card", "monobank", csv_transactions)

        for txn in seeded_store.get_transactions(USER):
            assert txn.exchange_rate == Decimal("0.025")

    def test_exchange_rate_not_tracked_without_converter(self, seeded_store, csv_transactions):
        ImportService(seeded_store).import_transactions(USER, "card", "monobank", csv_transactions)
        assert all(t.exchange_rate is None for t in seeded_store.get_transactions(USER))


class TestImportQif:
    """Tests for QIF imports with account mapping and transfer pairing."""

    def test_import_all_accounts(self, seeded_store, qif_result):
        result = ImportService(seeded_store).import_qif(USER, qif_result, QIF_ACCOUNTS)

        assert result.imported == 4
        assert result.paired_created == 1
        assert result.failed == 0
        assert len(seeded_store.get_transactions(USER)) == 5

    def test_descriptions_and_categories(self, seeded_store, qif_result):
        ImportService(seeded_store).import_qif(USER, qif_result, QIF_ACCOUNTS)
        checking = seeded_store.get_transactions(USER, account_id="checking")
        by_amount = {t.amount: t for t in checking}

        groceries = by_amount[Decimal("42.50")]
        assert groceries.description == "Weekly groceries"
        assert groceries.merchant_name == "Weekly groceries"
        assert groceries.category_id == category_id(seeded_store, "Groceries")
        assert groceries.currency == "EUR"

        salary = by_amount[Decimal("1500.00")]
        assert salary.description == "Salary"
        assert salary.category_id == category_id(seeded_store, "Salary")

        savings = seeded_store.get_transactions(USER, account_id="savings")
        interest = next(t for t in savings if t.amount == Decimal("10.00"))
        assert interest.description == "Interest"
        assert interest.category_id is None

    def test_transfer_pair_created(self, seeded_store, qif_result):
        ImportService(seeded_store).import_qif(USER, qif_result, QIF_ACCOUNTS)

        transfer_out = next(
            t for t in seeded_store.get_transactions(USER, account_id="checking")
            if t.amount == Decimal("200.00")
        )
        assert transfer_out.description == "To Savings"
        assert transfer_out.type == TransactionType.EXPENSE
        assert transfer_out.category_id == category_id(seeded_store, "Transfer Out")
        assert transfer_out.pair_id

        pair = seeded_store.get_transactions_by_pair_id(USER, transfer_out.pair_id)
        assert len(pair) == 2
        counterpart = next(t for t in pair if t.id != transfer_out.id)
        assert counterpart.account_id == "savings"
        assert counterpart.type == TransactionType.INCOME
        assert counterpart.description == "From Checking"
        assert counterpart.category_id == category_id(seeded_store, "Transfer In")

        record = seeded_store.get_import_record(USER, counterpart.id)
        assert record.hash == paired_hash(seeded_store.get_import_record(USER, transfer_out.id).hash)
        assert record.source == QIF_SOURCE

    def test_reimport_creates_nothing(self, seeded_store, qif_result):
        service = ImportService(seeded_store)
        service.import_qif(USER, qif_result, QIF_ACCOUNTS)
        second = service.import_qif(USER, qif_result, QIF_ACCOUNTS)

        assert second.imported == 0
        assert second.paired_created == 0
        assert second.duplicates == 4
        assert len(seeded_store.get_transactions(USER)) == 5

    def test_unmapped_account_skipped(self, seeded_store, qif_result):
        result = ImportService(seeded_store).import_qif(
            USER, qif_result, {"Checking": ("checking", "USD")}
        )

        assert result.skipped_accounts == ["Savings"]
        assert result.imported == 3
        assert result.paired_created == 0

        stored = seeded_store.get_transactions(USER)
        assert all(t.currency == "USD" for t in stored)
        transfer = next(t for t in stored if t.amount == Decimal("200.00"))
        assert transfer.description == "To Savings"
        assert transfer.pair_id is None

    def test_counterpart_failure_unlinks_original(self, seeded_store, qif_result, monkeypatch):
        original = seeded_store.create_imported_transaction

        def failing_counterpart(user_id, new, hash, source):
            if hash.endswith("-paired"):
                raise sqlite3.OperationalError("disk I/O error")
            return original(user_id, new, hash=hash, source=source)

        monkeypatch.setattr(seeded_store, "create_imported_transaction", failing_counterpart)
        result = ImportService(seeded_store).import_qif(USER, qif_result, QIF_ACCOUNTS)

        assert result.paired_created == 0
        assert result.imported == 4
        assert any("disk I/O error" in error for error in result.errors)
        assert seeded_store.get_stats(USER)["paired_transactions"] == 0

    def test_failed_unlink_after_counterpart_failure_reported(
        self, seeded_store, qif_result, monkeypatch
    ):
        original = seeded_store.create_imported_transaction

        def failing_counterpart(user_id, new, hash, source):
            if hash.endswith("-paired"):
                raise sqlite3.OperationalError("disk I/O error")
            return original(user_id, new, hash=hash, source=source)

        def failing_update(user_id, transaction_id, changes):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(seeded_store, "create_imported_transaction", failing_counterpart)
        monkeypatch.setattr(seeded_store, "update_transaction", failing_update)
        result = ImportService(seeded_store).import_qif(USER, qif_result, QIF_ACCOUNTS)

        assert result.imported == 4
        assert result.paired_created == 0
        assert any("pair_id not cleared" in error for error in result.errors)
        assert any("disk I/O error" in error for error in result.errors)

    def test_transfer_categories_created_when_missing(self, store, qif_result):
        ImportService(store).import_qif(USER, qif_result, QIF_ACCOUNTS)

        transfer_out = store.get_category_by_name(USER, "Transfer Out")
        assert transfer_out is not None
        assert transfer_out.is_system


class TestDeleteTransaction:
    """Tests for deletion with import-history cleanup."""

    def test_delete_allows_reimport(self, seeded_store, csv_transactions):
        service = ImportService(seeded_store)
        result = service.import_transactions(USER, "card", "monobank", csv_transactions)

        outcome = service.delete_transaction(USER, result.transaction_ids[0])
        assert outcome.deleted
        assert outcome.import_records_removed == 1
        assert outcome.cleanup_warning is None

        again = service.import_transactions(USER, "card", "monobank", csv_transactions)
        assert again.imported == 1
        assert again.duplicates == 1

    def test_delete_transfer_unlinks_counterpart(self, seeded_store, qif_result):
        service = ImportService(seeded_store)
        service.import_qif(USER, qif_result, QIF_ACCOUNTS)
        transfer_out = next(t for t in seeded_store.get_transactions(USER) if t.pair_id)
        partner = next(
            t
            for t in seeded_store.get_transactions_by_pair_id(USER, transfer_out.pair_id)
            if t.id != transfer_out.id
        )

        assert service.delete_transaction(USER, transfer_out.id).deleted

        assert seeded_store.get_transaction(USER, partner.id).pair_id is None
        assert seeded_store.get_stats(USER)["paired_transactions"] == 0

    def test_delete_missing(self, seeded_store):
        outcome = ImportService(seeded_store).delete_transaction(USER, 12345)
        assert not outcome.deleted
        assert outcome.import_records_removed == 0

    def test_delete_manual_transaction(self, seeded_store, csv_transactions):
        txn = seeded_store.create_transaction(
            USER,
            NewTransaction(
                account_id="cash",
                amount=Decimal("5"),
                currency="UAH",
                type=TransactionType.EXPENSE,
                description="Kiosk",
                date=csv_transactions[0].date,
            ),
        )
        outcome = ImportService(seeded_store).delete_transaction(USER, txn.id)

        assert outcome.deleted
        assert outcome.import_records_removed == 0

    def test_cleanup_failure_is_a_warning(self, seeded_store, csv_transactions, monkeypatch):
        service = ImportService(seeded_store)
        result = service.import_transactions(USER, "card", "monobank", csv_transactions)

        def broken(user_id, transaction_id):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(seeded_store, "delete_import_record", broken)
        outcome = service.delete_transaction(USER, result.transaction_ids[0])

        assert outcome.deleted
        assert outcome.cleanup_warning is not None
        assert "database is locked" in str(outcome.cleanup_warning)
        assert seeded_store.get_transaction(USER, result.transaction_ids[0]) is None


class TestImportResult:
    def test_merge(self):
        a = ImportResult(imported=1, duplicates=2, errors=["x"])
        b = ImportResult(imported=3, failed=1, paired_created=1, skipped_accounts=["S"])
        a.merge(b)

        assert (a.imported, a.duplicates, a.failed, a.paired_created) == (4, 2, 1, 1)
        assert a.errors == ["x"]
        assert a.skipped_accounts == ["S"]
        assert a.total == 7
