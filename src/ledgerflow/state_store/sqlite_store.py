"""
SQLite-based ledger store implementation.

Tables:
- categories: Per-user categories, including the two system transfer categories
- transactions: Ledger transactions (amounts stored as Decimal text)
- imported_transactions: Import history (hash -> transaction) for deduplication
- budgets: Category spending targets
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from ..schemas.budget import Budget, BudgetPeriod
from ..schemas.transaction import (
    DEFAULT_CATEGORIES,
    SYSTEM_CATEGORY_NAMES,
    Category,
    ImportRecord,
    LedgerTransaction,
    NewTransaction,
    SystemCategory,
    TransactionType,
)

# Columns a caller may change through update_transaction()
UPDATABLE_FIELDS = frozenset(
    {
        "account_id",
        "amount",
        "currency",
        "type",
        "category_id",
        "description",
        "date",
        "tags",
        "merchant_name",
        "notes",
        "exclude_from_analytics",
        "pair_id",
        "fee",
    }
)


class LedgerStoreError(Exception):
    """Base error for ledger store operations."""


class DuplicateImportError(LedgerStoreError):
    """An import record with the same (user, source, hash) already exists."""

    def __init__(self, user_id: str, source: str, hash: str):
        self.user_id = user_id
        self.source = source
        self.hash = hash
        super().__init__(f"Hash {hash} already imported from {source}")


class SystemCategoryError(LedgerStoreError):
    """Attempt to rename or delete a reserved transfer category."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _decimal_or_none(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _text_or_none(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def category_from_row(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        type=TransactionType(row["type"]),
        is_system=bool(row["is_system"]),
    )


def transaction_from_row(row: sqlite3.Row) -> LedgerTransaction:
    return LedgerTransaction(
        id=row["id"],
        user_id=row["user_id"],
        account_id=row["account_id"],
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        type=TransactionType(row["type"]),
        description=row["description"],
        date=datetime.fromisoformat(row["date"]),
        category_id=row["category_id"],
        tags=json.loads(row["tags"]) if row["tags"] else [],
        source_name=row["source_name"],
        merchant_name=row["merchant_name"],
        notes=row["notes"],
        exclude_from_analytics=bool(row["exclude_from_analytics"]),
        pair_id=row["pair_id"],
        exchange_rate=_decimal_or_none(row["exchange_rate"]),
        fee=_decimal_or_none(row["fee"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def import_record_from_row(row: sqlite3.Row) -> ImportRecord:
    return ImportRecord(
        id=row["id"],
        user_id=row["user_id"],
        transaction_id=row["transaction_id"],
        hash=row["hash"],
        source=row["source"],
        import_date=row["import_date"],
    )


def budget_from_row(row: sqlite3.Row) -> Budget:
    return Budget(
        id=row["id"],
        user_id=row["user_id"],
        category_id=row["category_id"],
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        period=BudgetPeriod(row["period"]),
        start_date=datetime.fromisoformat(row["start_date"]),
        end_date=datetime.fromisoformat(row["end_date"]) if row["end_date"] else None,
        alert_threshold=row["alert_threshold"],
        is_active=bool(row["is_active"]),
    )


class LedgerStore:
    """
    SQLite-based ledger store.

    Provides persistent storage of:
    - Transactions (per user, per account)
    - Categories (with reserved transfer categories)
    - Import history used for deduplication
    - Budgets

    Every read and write is scoped by user_id.
    Thread-safe for single-writer scenarios.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize ledger store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    type TEXT NOT NULL,  -- income, expense
                    is_system INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    UNIQUE (user_id, name, type)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    account_id TEXT NOT NULL,
                    amount TEXT NOT NULL,  -- Decimal
                    currency TEXT NOT NULL,
                    type TEXT NOT NULL,
                    category_id INTEGER,
                    description TEXT NOT NULL,
                    date TEXT NOT NULL,  -- ISO local wall-clock time
                    tags TEXT,  -- JSON array
                    source_name TEXT,
                    merchant_name TEXT,
                    notes TEXT,
                    exclude_from_analytics INTEGER NOT NULL DEFAULT 0,
                    pair_id TEXT,
                    exchange_rate TEXT,  -- Decimal, base currency per unit
                    fee TEXT,  -- Decimal
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL
                )
            """
            )

            # No FK to transactions: history rows are cleaned up explicitly
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS imported_transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    transaction_id INTEGER NOT NULL,
                    hash TEXT NOT NULL,
                    source TEXT NOT NULL,
                    import_date TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS budgets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    category_id INTEGER NOT NULL,
                    amount TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    period TEXT NOT NULL,
                    start_date TEXT NOT NULL,
                    end_date TEXT,
                    alert_threshold INTEGER NOT NULL DEFAULT 80,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE CASCADE
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_user_date ON transactions(user_id, date)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_imported_user_source "
                "ON imported_transactions(user_id, source)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_imported_transaction "
                "ON imported_transactions(transaction_id)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Category methods

    def create_category(
        self,
        user_id: str,
        name: str,
        type: TransactionType,
        is_system: bool = False,
    ) -> Category:
        """Create a category. Names are unique per (user, type)."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO categories (user_id, name, type, is_system, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (user_id, name, TransactionType(type).value, int(is_system), _now()),
            )
            category_id = cursor.lastrowid
        return Category(
            id=category_id,
            user_id=user_id,
            name=name,
            type=TransactionType(type),
            is_system=is_system,
        )

    def get_category(self, user_id: str, category_id: int) -> Category | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM categories WHERE id = ? AND user_id = ?", (category_id, user_id)
            ).fetchone()
        return category_from_row(row) if row else None

    def get_category_by_name(
        self, user_id: str, name: str, type: TransactionType | None = None
    ) -> Category | None:
        query = "SELECT * FROM categories WHERE user_id = ? AND name = ?"
        params: list[Any] = [user_id, name]
        if type is not None:
            query += " AND type = ?"
            params.append(TransactionType(type).value)
        query += " ORDER BY id LIMIT 1"

        with self._transaction() as conn:
            row = conn.execute(query, params).fetchone()
        return category_from_row(row) if row else None

    def list_categories(self, user_id: str, type: TransactionType | None = None) -> list[Category]:
        query = "SELECT * FROM categories WHERE user_id = ?"
        params: list[Any] = [user_id]
        if type is not None:
            query += " AND type = ?"
            params.append(TransactionType(type).value)
        query += " ORDER BY id"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [category_from_row(row) for row in rows]

    def get_system_category(self, user_id: str, system: SystemCategory) -> Category:
        """Return a transfer category, creating it on first use."""
        category = self.get_category_by_name(user_id, system.value, system.transaction_type)
        if category is not None:
            return category
        return self.create_category(user_id, system.value, system.transaction_type, is_system=True)

    def ensure_default_categories(self, user_id: str) -> list[Category]:
        """
        Seed the default categories for a user.

        Existing categories are left alone; returns the full category list.
        """
        with self._transaction() as conn:
            now = _now()
            for name, type in DEFAULT_CATEGORIES:
                conn.execute(
                    """
                    INSERT OR IGNORE INTO categories (user_id, name, type, is_system, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """,
                    (user_id, name, type.value, int(name in SYSTEM_CATEGORY_NAMES), now),
                )
        return self.list_categories(user_id)

    def rename_category(self, user_id: str, category_id: int, name: str) -> Category:
        """
        Rename a category.

        Raises:
            SystemCategoryError: If the category is a transfer category
            LedgerStoreError: If the category does not exist
        """
        category = self.get_category(user_id, category_id)
        if category is None:
            raise LedgerStoreError(f"Category {category_id} not found")
        if category.is_system:
            raise SystemCategoryError(f"Category '{category.name}' is reserved and cannot be renamed")
        if name in SYSTEM_CATEGORY_NAMES:
            raise SystemCategoryError(f"Category name '{name}' is reserved")

        with self._transaction() as conn:
            conn.execute(
                "UPDATE categories SET name = ? WHERE id = ? AND user_id = ?",
                (name, category_id, user_id),
            )
        category.name = name
        return category

    def delete_category(self, user_id: str, category_id: int) -> bool:
        """
        Delete a category. Transactions keep existing with no category.

        Raises:
            SystemCategoryError: If the category is a transfer category
        """
        category = self.get_category(user_id, category_id)
        if category is None:
            return False
        if category.is_system:
            raise SystemCategoryError(f"Category '{category.name}' is reserved and cannot be deleted")

        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM categories WHERE id = ? AND user_id = ?", (category_id, user_id)
            )
        return True

    # Transaction methods

    @staticmethod
    def _insert_transaction(conn: sqlite3.Connection, user_id: str, new: NewTransaction) -> int:
        now = _now()
        cursor = conn.execute(
            """
            INSERT INTO transactions
            (user_id, account_id, amount, currency, type, category_id, description, date,
             tags, source_name, merchant_name, notes, exclude_from_analytics, pair_id,
             exchange_rate, fee, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                user_id,
                new.account_id,
                str(new.amount),
                new.currency,
                TransactionType(new.type).value,
                new.category_id,
                new.description,
                new.date.isoformat(),
                json.dumps(new.tags or []),
                new.source_name,
                new.merchant_name,
                new.notes,
                int(new.exclude_from_analytics),
                new.pair_id,
                _text_or_none(new.exchange_rate),
                _text_or_none(new.fee),
                now,
                now,
            ),
        )
        return cursor.lastrowid

    def create_transaction(self, user_id: str, new: NewTransaction) -> LedgerTransaction:
        """Create a transaction without import history."""
        with self._transaction() as conn:
            transaction_id = self._insert_transaction(conn, user_id, new)
            row = conn.execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,)).fetchone()
        return transaction_from_row(row)

    def create_imported_transaction(
        self, user_id: str, new: NewTransaction, hash: str, source: str
    ) -> LedgerTransaction:
        """
        Create a transaction and its import record atomically.

        Raises:
            DuplicateImportError: If (user, source, hash) is already recorded
        """
        try:
            with self._transaction() as conn:
                transaction_id = self._insert_transaction(conn, user_id, new)
                conn.execute(
                    """
                    INSERT INTO imported_transactions
                    (user_id, transaction_id, hash, source, import_date)
                    VALUES (?, ?, ?, ?, ?)
                """,
                    (user_id, transaction_id, hash, source, _now()),
                )
                row = conn.execute(
                    "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
                ).fetchone()
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateImportError(user_id, source, hash) from e
            raise LedgerStoreError(f"Could not store imported transaction: {e}") from e
        return transaction_from_row(row)

    def get_transaction(self, user_id: str, transaction_id: int) -> LedgerTransaction | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ? AND user_id = ?", (transaction_id, user_id)
            ).fetchone()
        return transaction_from_row(row) if row else None

    def get_transactions(
        self,
        user_id: str,
        type: TransactionType | None = None,
        category_ids: list[int] | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        account_id: str | None = None,
    ) -> list[LedgerTransaction]:
        """
        List a user's transactions, oldest first.

        Args:
            type: Only this transaction type
            category_ids: Only these categories
            start: Inclusive lower bound on date
            end: Inclusive upper bound on date
            account_id: Only this account
        """
        query = "SELECT * FROM transactions WHERE user_id = ?"
        params: list[Any] = [user_id]

        if type is not None:
            query += " AND type = ?"
            params.append(TransactionType(type).value)
        if category_ids is not None:
            if not category_ids:
                return []
            query += f" AND category_id IN ({','.join('?' for _ in category_ids)})"
            params.extend(category_ids)
        if start is not None:
            query += " AND date >= ?"
            params.append(start.isoformat())
        if end is not None:
            query += " AND date <= ?"
            params.append(end.isoformat())
        if account_id is not None:
            query += " AND account_id = ?"
            params.append(account_id)

        query += " ORDER BY date, id"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [transaction_from_row(row) for row in rows]

    def get_transactions_by_date_range(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[LedgerTransaction]:
        return self.get_transactions(user_id, start=start, end=end)

    def get_transactions_by_pair_id(self, user_id: str, pair_id: str) -> list[LedgerTransaction]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM transactions WHERE user_id = ? AND pair_id = ? ORDER BY id",
                (user_id, pair_id),
            ).fetchall()
        return [transaction_from_row(row) for row in rows]

    def update_transaction(
        self, user_id: str, transaction_id: int, changes: dict[str, Any]
    ) -> LedgerTransaction:
        """
        Apply a partial update.

        Raises:
            ValueError: If a field is not updatable
            LedgerStoreError: If the transaction does not exist for this user
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        values: dict[str, Any] = {}
        for key, value in changes.items():
            if key in ("amount", "fee"):
                values[key] = _text_or_none(value)
            elif key == "type":
                values[key] = TransactionType(value).value
            elif key == "date":
                values[key] = value.isoformat()
            elif key == "tags":
                values[key] = json.dumps(value or [])
            elif key == "exclude_from_analytics":
                values[key] = int(bool(value))
            else:
                values[key] = value
        values["updated_at"] = _now()

        assignments = ", ".join(f"{key} = ?" for key in values)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE transactions SET {assignments} WHERE id = ? AND user_id = ?",
                [*values.values(), transaction_id, user_id],
            )
            if cursor.rowcount == 0:
                raise LedgerStoreError(f"Transaction {transaction_id} not found")
            row = conn.execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,)).fetchone()
        return transaction_from_row(row)

    def delete_transaction(self, user_id: str, transaction_id: int) -> bool:
        """
        Delete a transaction. Returns False if it did not exist.

        A transfer partner sharing its pair_id is unlinked in the same
        transaction so it can be paired again.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT pair_id FROM transactions WHERE id = ? AND user_id = ?",
                (transaction_id, user_id),
            ).fetchone()
            if row is None:
                return False
            conn.execute(
                "DELETE FROM transactions WHERE id = ? AND user_id = ?", (transaction_id, user_id)
            )
            if row["pair_id"]:
                conn.execute(
                    "UPDATE transactions SET pair_id = NULL, updated_at = ? "
                    "WHERE user_id = ? AND pair_id = ?",
                    (_now(), user_id, row["pair_id"]),
                )
        return True

    # Import history methods

    def is_duplicate_hash(self, user_id: str, source: str, hash: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM imported_transactions
                WHERE user_id = ? AND source = ? AND hash = ?
                LIMIT 1
            """,
                (user_id, source, hash),
            ).fetchone()
        return row is not None

    def get_imported_hashes(self, user_id: str, source: str) -> set[str]:
        """All hashes recorded for a (user, source)."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT hash FROM imported_transactions WHERE user_id = ? AND source = ?",
                (user_id, source),
            ).fetchall()
        return {row["hash"] for row in rows}

    def get_import_record(self, user_id: str, transaction_id: int) -> ImportRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM imported_transactions
                WHERE user_id = ? AND transaction_id = ?
                ORDER BY id LIMIT 1
            """,
                (user_id, transaction_id),
            ).fetchone()
        return import_record_from_row(row) if row else None

    def delete_import_record(self, user_id: str, transaction_id: int) -> int:
        """Remove import history for a transaction. Returns rows deleted."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM imported_transactions WHERE user_id = ? AND transaction_id = ?",
                (user_id, transaction_id),
            )
        return cursor.rowcount

    # Budget methods

    def create_budget(
        self,
        user_id: str,
        category_id: int,
        amount: Decimal,
        currency: str,
        period: BudgetPeriod,
        start_date: datetime,
        end_date: datetime | None = None,
        alert_threshold: int = 80,
    ) -> Budget:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO budgets
                (user_id, category_id, amount, currency, period, start_date, end_date,
                 alert_threshold, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?)
            """,
                (
                    user_id,
                    category_id,
                    str(amount),
                    currency,
                    BudgetPeriod(period).value,
                    start_date.isoformat(),
                    end_date.isoformat() if end_date else None,
                    alert_threshold,
                    _now(),
                ),
            )
            row = conn.execute("SELECT * FROM budgets WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return budget_from_row(row)

    def get_budget(self, user_id: str, budget_id: int) -> Budget | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM budgets WHERE id = ? AND user_id = ?", (budget_id, user_id)
            ).fetchone()
        return budget_from_row(row) if row else None

    def list_budgets(self, user_id: str, active_only: bool = True) -> list[Budget]:
        query = "SELECT * FROM budgets WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY id"

        with self._transaction() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [budget_from_row(row) for row in rows]

    # Stats

    def get_stats(self, user_id: str | None = None) -> dict[str, int]:
        """Row counts, optionally for one user."""
        tables = ["transactions", "categories", "imported_transactions", "budgets"]
        stats: dict[str, int] = {}

        with self._transaction() as conn:
            for table in tables:
                if user_id is None:
                    row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
                else:
                    row = conn.execute(
                        f"SELECT COUNT(*) FROM {table} WHERE user_id = ?", (user_id,)
                    ).fetchone()
                stats[table] = row[0]

            query = "SELECT COUNT(*) FROM transactions WHERE pair_id IS NOT NULL"
            params: tuple = ()
            if user_id is not None:
                query += " AND user_id = ?"
                params = (user_id,)
            stats["paired_transactions"] = conn.execute(query, params).fetchone()[0]

        return stats
