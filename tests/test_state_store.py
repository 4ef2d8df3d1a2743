"""Tests for the SQLite ledger store and its migrations."""

import sqlite3
from datetime import datetime
from decimal import Decimal

import pytest

from ledgerflow.schemas.budget import BudgetPeriod
from ledgerflow.schemas.transaction import NewTransaction, SystemCategory, TransactionType
from ledgerflow.state_store import (
    DuplicateImportError,
    LedgerStore,
    LedgerStoreError,
    SystemCategoryError,
)
from ledgerflow.state_store.migrations import MigrationRunner, get_all_migrations

USER = "user-1"
OTHER_USER = "user-2"


def new_txn(**overrides) -> NewTransaction:
    values = {
        "account_id": "card",
        "amount": Decimal("42.50"),
        "currency": "UAH",
        "type": TransactionType.EXPENSE,
        "description": "COFFEE SHOP",
        "date": datetime(2024, 3, 15, 9, 10),
    }
    values.update(overrides)
    return NewTransaction(**values)


def index_names(store: LedgerStore) -> set[str]:
    conn = store._get_connection()
    try:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'").fetchall()
    finally:
        conn.close()
    return {row["name"] for row in rows}


class TestLedgerStoreInit:
    """Tests for database initialization."""

    def test_init_creates_db(self, temp_db):
        LedgerStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        conn = store._get_connection()
        try:
            rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        finally:
            conn.close()
        tables = {row["name"] for row in rows}

        for table in ("categories", "transactions", "imported_transactions", "budgets", "migrations"):
            assert table in tables

    def test_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "ledger.db"
        LedgerStore(db_path)
        assert db_path.exists()

    def test_reopen_keeps_data(self, temp_db):
        store = LedgerStore(temp_db)
        store.create_transaction(USER, new_txn())

        reopened = LedgerStore(temp_db)
        assert len(reopened.get_transactions(USER)) == 1


class TestMigrations:
    """Tests for versioned schema migrations."""

    def test_all_migrations_ordered(self):
        labels = [m.label for m in get_all_migrations()]
        assert labels == ["001_import_hash_unique", "002_pair_id_index"]

    def test_applied_on_init(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            assert runner.get_current_version() == 2
            assert runner.get_pending() == []
            assert runner.run_pending() == []
        finally:
            conn.close()

        assert "idx_imported_unique_hash" in index_names(store)
        assert "idx_transactions_pair" in index_names(store)

    def test_skip_migrations(self, temp_db):
        store = LedgerStore(temp_db, run_migrations=False)
        assert "idx_imported_unique_hash" not in index_names(store)

    def test_unique_migration_removes_existing_duplicates(self, temp_db):
        store = LedgerStore(temp_db, run_migrations=False)
        first = store.create_imported_transaction(USER, new_txn(), hash="abc", source="monobank")
        second = store.create_imported_transaction(USER, new_txn(), hash="abc", source="monobank")

        conn = store._get_connection()
        try:
            MigrationRunner(conn).run_pending()
        finally:
            conn.close()

        assert store.get_import_record(USER, first.id) is not None
        assert store.get_import_record(USER, second.id) is None

    def test_migrate_down_and_up(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.migrate_to(0)
            assert runner.get_current_version() == 0
            assert "idx_imported_unique_hash" not in index_names(store)

            runner.migrate_to(2)
            assert runner.get_current_version() == 2
        finally:
            conn.close()

        assert "idx_imported_unique_hash" in index_names(store)


class TestCategories:
    """Tests for category storage."""

    def test_create_and_get(self, store):
        category = store.create_category(USER, "Groceries", TransactionType.EXPENSE)

        loaded = store.get_category(USER, category.id)
        assert loaded.name == "Groceries"
        assert loaded.type == TransactionType.EXPENSE
        assert not loaded.is_system

    def test_scoped_by_user(self, store):
        category = store.create_category(USER, "Groceries", TransactionType.EXPENSE)
        assert store.get_category(OTHER_USER, category.id) is None
        assert store.list_categories(OTHER_USER) == []

    def test_name_unique_per_type(self, store):
        store.create_category(USER, "Gifts", TransactionType.EXPENSE)
        store.create_category(USER, "Gifts", TransactionType.INCOME)

        with pytest.raises(sqlite3.IntegrityError):
            store.create_category(USER, "Gifts", TransactionType.EXPENSE)

    def test_get_by_name_and_type(self, store):
        store.create_category(USER, "Gifts", TransactionType.EXPENSE)
        income = store.create_category(USER, "Gifts", TransactionType.INCOME)

        assert store.get_category_by_name(USER, "Gifts", TransactionType.INCOME).id == income.id
        assert store.get_category_by_name(USER, "Missing") is None

    def test_list_by_type(self, store):
        store.create_category(USER, "Groceries", TransactionType.EXPENSE)
        store.create_category(USER, "Salary", TransactionType.INCOME)

        names = [c.name for c in store.list_categories(USER, TransactionType.INCOME)]
        assert names == ["Salary"]

    def test_default_categories_idempotent(self, store):
        first = store.ensure_default_categories(USER)
        second = store.ensure_default_categories(USER)

        assert len(first) == len(second)
        system = {c.name for c in second if c.is_system}
        assert system == {"Transfer Out", "Transfer In"}

    def test_system_category_created_on_demand(self, store):
        out = store.get_system_category(USER, SystemCategory.TRANSFER_OUT)
        again = store.get_system_category(USER, SystemCategory.TRANSFER_OUT)

        assert out.id == again.id
        assert out.is_system
        assert out.type == TransactionType.EXPENSE
        assert store.get_system_category(USER, SystemCategory.TRANSFER_IN).type == TransactionType.INCOME

    def test_system_category_protected(self, store):
        out = store.get_system_category(USER, SystemCategory.TRANSFER_OUT)

        with pytest.raises(SystemCategoryError):
            store.rename_category(USER, out.id, "Moving money")
        with pytest.raises(SystemCategoryError):
            store.delete_category(USER, out.id)

    def test_reserved_name_rejected(self, store):
        category = store.create_category(USER, "Misc", TransactionType.EXPENSE)
        with pytest.raises(SystemCategoryError):
            store.rename_category(USER, category.id, "Transfer In")

    def test_rename(self, store):
        category = store.create_category(USER, "Misc", TransactionType.EXPENSE)
        store.rename_category(USER, category.id, "Other")
        assert store.get_category(USER, category.id).name == "Other"

    def test_rename_missing(self, store):
        with pytest.raises(LedgerStoreError):
            store.rename_category(USER, 999, "Other")

    def test_delete_keeps_transactions(self, store):
        category = store.create_category(USER, "Misc", TransactionType.EXPENSE)
        txn = store.create_transaction(USER, new_txn(category_id=category.id))

        assert store.delete_category(USER, category.id) is True
        assert store.get_transaction(USER, txn.id).category_id is None
        assert store.delete_category(USER, category.id) is False


class TestTransactions:
    """Tests for transaction storage."""

    def test_create_round_trip(self, store):
        txn = store.create_transaction(
            USER,
            new_txn(
                tags=["food", "coffee"],
                exchange_rate=Decimal("0.025"),
                fee=Decimal("1.5"),
                notes="morning",
            ),
        )

        loaded = store.get_transaction(USER, txn.id)
        assert loaded.amount == Decimal("42.50")
        assert loaded.type == TransactionType.EXPENSE
        assert loaded.date == datetime(2024, 3, 15, 9, 10)
        assert loaded.tags == ["food", "coffee"]
        assert loaded.exchange_rate == Decimal("0.025")
        assert loaded.fee == Decimal("1.5")
        assert loaded.notes == "morning"
        assert loaded.pair_id is None
        assert loaded.created_at.endswith("Z")

    def test_scoped_by_user(self, store):
        txn = store.create_transaction(USER, new_txn())
        assert store.get_transaction(OTHER_USER, txn.id) is None
        assert store.get_transactions(OTHER_USER) == []

    def test_filters(self, store):
        groceries = store.create_category(USER, "Groceries", TransactionType.EXPENSE)
        store.create_transaction(USER, new_txn(date=datetime(2024, 3, 1), category_id=groceries.id))
        store.create_transaction(USER, new_txn(date=datetime(2024, 3, 20), account_id="cash"))
        store.create_transaction(
            USER, new_txn(date=datetime(2024, 4, 2), type=TransactionType.INCOME)
        )

        assert len(store.get_transactions(USER, type=TransactionType.EXPENSE)) == 2
        assert len(store.get_transactions(USER, category_ids=[groceries.id])) == 1
        assert store.get_transactions(USER, category_ids=[]) == []
        assert len(store.get_transactions(USER, account_id="cash")) == 1

        march = store.get_transactions_by_date_range(
            USER, datetime(2024, 3, 1), datetime(2024, 3, 31, 23, 59, 59)
        )
        assert len(march) == 2

    def test_ordered_by_date(self, store):
        store.create_transaction(USER, new_txn(date=datetime(2024, 3, 20), description="late"))
        store.create_transaction(USER, new_txn(date=datetime(2024, 3, 1), description="early"))

        assert [t.description for t in store.get_transactions(USER)] == ["early", "late"]

    def test_update(self, store):
        txn = store.create_transaction(USER, new_txn())
        updated = store.update_transaction(
            USER, txn.id, {"amount": Decimal("10"), "pair_id": "p1", "exclude_from_analytics": True}
        )

        assert updated.amount == Decimal("10")
        assert updated.pair_id == "p1"
        assert updated.exclude_from_analytics is True
        assert store.get_transactions_by_pair_id(USER, "p1")[0].id == txn.id

    def test_update_unknown_field(self, store):
        txn = store.create_transaction(USER, new_txn())
        with pytest.raises(ValueError, match="exchange_rate"):
            store.update_transaction(USER, txn.id, {"exchange_rate": Decimal("1")})

    def test_update_missing(self, store):
        with pytest.raises(LedgerStoreError):
            store.update_transaction(USER, 999, {"notes": "x"})

    def test_update_other_users_transaction(self, store):
        txn = store.create_transaction(USER, new_txn())
        with pytest.raises(LedgerStoreError):
            store.update_transaction(OTHER_USER, txn.id, {"notes": "x"})

    def test_delete(self, store):
        txn = store.create_transaction(USER, new_txn())

        assert store.delete_transaction(USER, txn.id) is True
        assert store.get_transaction(USER, txn.id) is None
        assert store.delete_transaction(USER, txn.id) is False

    def test_delete_unlinks_partner(self, store):
        out_txn = store.create_transaction(USER, new_txn(pair_id="pair-1"))
        in_txn = store.create_transaction(
            USER, new_txn(type=TransactionType.INCOME, pair_id="pair-1")
        )
        other = store.create_transaction(USER, new_txn(pair_id="pair-2"))

        assert store.delete_transaction(USER, out_txn.id) is True

        assert store.get_transaction(USER, in_txn.id).pair_id is None
        assert store.get_transaction(USER, other.id).pair_id == "pair-2"


class TestImportHistory:
    """Tests for import records and duplicate hashes."""

    def test_imported_transaction_recorded(self, store):
        txn = store.create_imported_transaction(USER, new_txn(), hash="h1", source="monobank")

        assert store.is_duplicate_hash(USER, "monobank", "h1")
        assert store.get_imported_hashes(USER, "monobank") == {"h1"}
        record = store.get_import_record(USER, txn.id)
        assert record.hash == "h1"
        assert record.source == "monobank"

    def test_hash_scoped_by_source_and_user(self, store):
        store.create_imported_transaction(USER, new_txn(), hash="h1", source="monobank")

        assert not store.is_duplicate_hash(USER, "privat", "h1")
        assert not store.is_duplicate_hash(OTHER_USER, "monobank", "h1")
        store.create_imported_transaction(USER, new_txn(), hash="h1", source="privat")
        store.create_imported_transaction(OTHER_USER, new_txn(), hash="h1", source="monobank")

    def test_duplicate_hash_rejected_atomically(self, store):
        store.create_imported_transaction(USER, new_txn(), hash="h1", source="monobank")

        with pytest.raises(DuplicateImportError) as exc_info:
            store.create_imported_transaction(USER, new_txn(), hash="h1", source="monobank")

        assert exc_info.value.hash == "h1"
        # The transaction insert was rolled back with the history insert
        assert len(store.get_transactions(USER)) == 1

    def test_foreign_key_failure_is_not_a_duplicate(self, store):
        with pytest.raises(LedgerStoreError) as exc_info:
            store.create_imported_transaction(
                USER, new_txn(category_id=999), hash="h1", source="monobank"
            )
        assert not isinstance(exc_info.value, DuplicateImportError)

    def test_delete_import_record(self, store):
        txn = store.create_imported_transaction(USER, new_txn(), hash="h1", source="monobank")

        assert store.delete_import_record(USER, txn.id) == 1
        assert store.delete_import_record(USER, txn.id) == 0
        assert not store.is_duplicate_hash(USER, "monobank", "h1")


class TestBudgetsAndStats:
    """Tests for budgets and statistics."""

    def test_create_and_list_budget(self, store):
        category = store.create_category(USER, "Groceries", TransactionType.EXPENSE)
        budget = store.create_budget(
            USER,
            category.id,
            Decimal("500"),
            "EUR",
            BudgetPeriod.MONTH,
            datetime(2024, 3, 1),
            alert_threshold=75,
        )

        assert budget.amount == Decimal("500")
        assert budget.period == BudgetPeriod.MONTH
        assert budget.end_date is None
        assert budget.is_active
        assert store.get_budget(USER, budget.id).alert_threshold == 75
        assert [b.id for b in store.list_budgets(USER)] == [budget.id]
        assert store.list_budgets(OTHER_USER) == []

    def test_stats(self, store):
        store.ensure_default_categories(USER)
        store.create_imported_transaction(USER, new_txn(pair_id="p1"), hash="h1", source="monobank")
        store.create_transaction(USER, new_txn())

        stats = store.get_stats(USER)
        assert stats["transactions"] == 2
        assert stats["imported_transactions"] == 1
        assert stats["paired_transactions"] == 1
        assert stats["budgets"] == 0
        assert stats["categories"] > 0
        assert store.get_stats(OTHER_USER)["transactions"] == 0
