"""
Canonical transaction schemas.

ParsedTransaction is the transient output of every format parser.
LedgerTransaction is the persisted shape owned by the ledger store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class TransactionType(str, Enum):
    """Direction of a transaction."""

    INCOME = "income"
    EXPENSE = "expense"

    @classmethod
    def from_signed_amount(cls, amount: Decimal) -> "TransactionType":
        """Negative amounts are expenses, everything else is income."""
        return cls.EXPENSE if amount < 0 else cls.INCOME

    @property
    def opposite(self) -> "TransactionType":
        return TransactionType.INCOME if self is TransactionType.EXPENSE else TransactionType.EXPENSE


class SystemCategory(str, Enum):
    """Reserved category names marking the two halves of a transfer."""

    TRANSFER_OUT = "Transfer Out"
    TRANSFER_IN = "Transfer In"

    @property
    def transaction_type(self) -> TransactionType:
        if self is SystemCategory.TRANSFER_OUT:
            return TransactionType.EXPENSE
        return TransactionType.INCOME


SYSTEM_CATEGORY_NAMES = frozenset(c.value for c in SystemCategory)

# Seeded for new users (name, type)
DEFAULT_CATEGORIES: list[tuple[str, TransactionType]] = [
    ("Groceries", TransactionType.EXPENSE),
    ("Restaurants", TransactionType.EXPENSE),
    ("Transport", TransactionType.EXPENSE),
    ("Utilities", TransactionType.EXPENSE),
    ("Health", TransactionType.EXPENSE),
    ("Entertainment", TransactionType.EXPENSE),
    ("Shopping", TransactionType.EXPENSE),
    ("Salary", TransactionType.INCOME),
    ("Gifts", TransactionType.INCOME),
    ("Other Income", TransactionType.INCOME),
    (SystemCategory.TRANSFER_OUT.value, TransactionType.EXPENSE),
    (SystemCategory.TRANSFER_IN.value, TransactionType.INCOME),
]


@dataclass
class ParsedTransaction:
    """
    Canonical transaction produced by a format parser.

    amount is always a non-negative magnitude; the original sign only
    survives as `type`.
    """

    date: datetime  # Local wall-clock time
    description: str
    amount: Decimal
    currency: str
    type: TransactionType
    hash: str

    # QIF-only details (empty for other formats)
    payee: str = ""
    memo: str = ""
    category: str = ""
    is_transfer: bool = False
    transfer_account: str | None = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError(f"ParsedTransaction amount must be >= 0, got {self.amount}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data: dict[str, Any] = {
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": str(self.amount),
            "currency": self.currency,
            "type": self.type.value,
            "hash": self.hash,
        }
        if self.is_transfer or self.payee or self.memo or self.category:
            data.update(
                {
                    "payee": self.payee,
                    "memo": self.memo,
                    "category": self.category,
                    "is_transfer": self.is_transfer,
                    "transfer_account": self.transfer_account,
                }
            )
        return data


@dataclass
class Category:
    """Spending or income category."""

    id: int
    user_id: str
    name: str
    type: TransactionType
    is_system: bool = False


@dataclass
class LedgerTransaction:
    """
    Persisted ledger transaction.

    pair_id links exactly one Transfer Out and one Transfer In transaction.
    exchange_rate is base currency per 1 unit of `currency`, captured at
    creation time and never rewritten.
    """

    id: int
    user_id: str
    account_id: str
    amount: Decimal
    currency: str
    type: TransactionType
    description: str
    date: datetime
    category_id: int | None = None
    tags: list[str] = field(default_factory=list)
    source_name: str | None = None
    merchant_name: str | None = None
    notes: str | None = None
    exclude_from_analytics: bool = False
    pair_id: str | None = None
    exchange_rate: Decimal | None = None
    fee: Decimal | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class NewTransaction:
    """Input for creating a ledger transaction."""

    account_id: str
    amount: Decimal
    currency: str
    type: TransactionType
    description: str
    date: datetime
    category_id: int | None = None
    tags: list[str] = field(default_factory=list)
    source_name: str | None = None
    merchant_name: str | None = None
    notes: str | None = None
    exclude_from_analytics: bool = False
    pair_id: str | None = None
    exchange_rate: Decimal | None = None
    fee: Decimal | None = None


@dataclass
class ImportRecord:
    """Import-history entry tying a content hash to the transaction it created."""

    id: int
    user_id: str
    transaction_id: int
    hash: str
    source: str
    import_date: str
