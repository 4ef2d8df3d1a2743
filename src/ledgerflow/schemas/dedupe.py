"""
Content hash generation (CRITICAL).

This module defines THE deterministic fingerprint functions used for import
deduplication. This is the ONLY way to generate import hashes in the system.

Hash Formats:
1. Statement / CSV imports: {hex}
   - hex = 32-bit rolling hash of "{YYYY-MM-DD HH:MM}-{description}-{amount}-{currency}"
   - Negative hash values keep their sign: "-1f3a9c"

2. QIF imports: qif-{hex}
   - hex = abs(32-bit rolling hash of "{account}|{YYYY-MM-DD}|{signed amount}|{description}")

3. Auto-created QIF transfer counterparts: {qif hash}-paired

The date part is ALWAYS built from the local wall-clock fields of the
transaction date. Never convert to UTC before hashing: a transaction at 23:58
local time must hash identically on every host regardless of its UTC offset.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

# Prefix for hashes produced from QIF records
QIF_HASH_PREFIX = "qif-"

# Suffix for the counterpart of an auto-paired QIF transfer
PAIRED_HASH_SUFFIX = "-paired"

_UINT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


@dataclass(frozen=True)
class DateComponents:
    """Local wall-clock components of a transaction date (minute precision)."""

    year: int
    month: int  # 1-12
    day: int
    hour: int
    minute: int

    def to_datetime(self) -> datetime:
        """Rebuild a naive local datetime from the components."""
        return datetime(self.year, self.month, self.day, self.hour, self.minute)


def extract_date_components(value: datetime) -> DateComponents:
    """
    Extract local date components from a datetime.

    Aware datetimes are read as-is: their own wall-clock fields are used and no
    timezone conversion is applied.
    """
    return DateComponents(
        year=value.year,
        month=value.month,
        day=value.day,
        hour=value.hour,
        minute=value.minute,
    )


def format_date_components(components: DateComponents) -> str:
    """Format components as YYYY-MM-DD HH:MM."""
    return (
        f"{components.year:04d}-{components.month:02d}-{components.day:02d} "
        f"{components.hour:02d}:{components.minute:02d}"
    )


def format_date_for_hash(value: datetime) -> str:
    """Format a datetime as the YYYY-MM-DD HH:MM string used in hashes."""
    return format_date_components(extract_date_components(value))


def format_amount(amount: Decimal | int | float | str) -> str:
    """
    Render an amount in its shortest decimal form.

    Trailing zeros are dropped: 42.50 -> "42.5", 100.00 -> "100".

    Args:
        amount: Amount in various formats (comma decimal separator allowed in strings)

    Returns:
        Normalized amount string
    """
    if isinstance(amount, float):
        amount = Decimal(repr(amount))
    elif isinstance(amount, (int, str)):
        amount = Decimal(str(amount).strip().replace(",", "."))
    elif not isinstance(amount, Decimal):
        raise ValueError(f"amount must be Decimal, int, float or str, got: {type(amount)}")

    if amount == 0:
        return "0"
    return format(amount.normalize(), "f")


def rolling_hash(text: str) -> int:
    """
    Compute the 32-bit signed polynomial hash (h * 31 + c) of a string.

    Characters are consumed as UTF-16 code units.

    Returns:
        Signed 32-bit integer
    """
    encoded = text.encode("utf-16-le")
    value = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        value = ((value << 5) - value + unit) & _UINT32_MASK
    if value & _INT32_SIGN:
        value -= 1 << 32
    return value


def compute_content_hash(
    date: datetime,
    description: str,
    amount: Decimal | int | float | str,
    currency: str,
) -> str:
    """
    Compute the import hash for a statement or CSV transaction.

    This is the SSOT function for duplicate detection of non-QIF imports.

    Hash components (in order, joined by "-"):
    - date: local YYYY-MM-DD HH:MM
    - description: as stored on the parsed transaction
    - amount: absolute magnitude, shortest decimal form
    - currency: 3-letter code

    Args:
        date: Local transaction date
        description: Transaction description
        amount: Non-negative amount
        currency: Currency code

    Returns:
        Lowercase hex string (with a leading "-" for negative hash values)

    Examples:
        >>> compute_content_hash(datetime(2024, 3, 15, 9, 10), "COFFEE SHOP", "120.50", "UAH")
        '...'  # Deterministic hash
    """
    payload = f"{format_date_for_hash(date)}-{description}-{format_amount(amount)}-{currency}"
    return format(rolling_hash(payload), "x")


def compute_qif_hash(
    account_name: str,
    date: datetime,
    signed_amount: Decimal | int | float | str,
    description: str,
) -> str:
    """
    Compute the import hash for a QIF transaction.

    Unlike content hashes, the amount keeps its sign and only the calendar day
    of the date is used (QIF dates carry no time of day).

    Returns:
        "qif-" followed by the hex of the absolute hash value
    """
    payload = f"{account_name}|{date.strftime('%Y-%m-%d')}|{format_amount(signed_amount)}|{description}"
    return f"{QIF_HASH_PREFIX}{abs(rolling_hash(payload)):x}"


def paired_hash(source_hash: str) -> str:
    """Hash recorded for the auto-created counterpart of a QIF transfer."""
    return f"{source_hash}{PAIRED_HASH_SUFFIX}"


def is_qif_hash(value: str) -> bool:
    """Check if a hash was produced from a QIF record."""
    return bool(value) and value.startswith(QIF_HASH_PREFIX)
