"""
QIF (Quicken Interchange Format) parser.

Parses QIF files exported from HomeBank and similar applications.

Format reference:
- !Account      account header; N = name, T = type, ^ = end of account record
- !Type:<Kind>  transaction list header (Bank, Cash, CCard, ...)
- D             date (YYYY/MM/DD)
- T             amount (negative = expense, non-negative = income)
- P             payee
- M             memo
- L             category, or [AccountName] for a transfer
- ^             end of record
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation

from ..schemas.dedupe import compute_qif_hash
from ..schemas.transaction import ParsedTransaction, TransactionType
from .base import (
    BaseParser,
    CancellationToken,
    ParseReport,
    RecordError,
    decode_input,
    split_lines,
)

logger = logging.getLogger(__name__)

QIF_SOURCE = "homebank-qif"

# Memo placeholder some exporters write instead of an empty memo
NULL_MEMO = "(null)"

NO_DESCRIPTION = "No description"

DATE_PATTERN = re.compile(r"^(\d{4})[/-](\d{1,2})[/-](\d{1,2})$")


@dataclass
class QIFAccount:
    """Account declared by a !Account block."""

    name: str = ""
    type: str = ""


@dataclass
class QIFAccountData:
    """An account and the transactions listed under it."""

    account: QIFAccount
    transactions: list[ParsedTransaction] = field(default_factory=list)


@dataclass
class QIFParseResult:
    """Parsed QIF file, grouped by account."""

    accounts: list[QIFAccountData] = field(default_factory=list)
    errors: list[RecordError] = field(default_factory=list)

    @property
    def total_transactions(self) -> int:
        return sum(len(acc.transactions) for acc in self.accounts)

    def get_account(self, name: str) -> QIFAccountData | None:
        for acc in self.accounts:
            if acc.account.name == name:
                return acc
        return None


def parse_qif_date(value: str) -> datetime | None:
    """
    Parse a QIF date (YYYY/MM/DD) at noon local time.

    Noon keeps the calendar day stable when the value is later shifted by a
    timezone offset.
    """
    match = DATE_PATTERN.match(value.strip())
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return datetime(year, month, day, 12, 0, 0)
    except ValueError:
        return None


def parse_qif_amount(value: str) -> Decimal | None:
    """Parse a QIF amount; thousands commas are ignored."""
    cleaned = value.strip().replace(",", "")
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def is_transfer_category(category: str) -> bool:
    """Transfers are written as [AccountName]."""
    return len(category) >= 2 and category.startswith("[") and category.endswith("]")


def extract_transfer_account(category: str) -> str:
    """Counter-account name of a transfer category."""
    return category[1:-1] if is_transfer_category(category) else ""


@dataclass
class _PendingRecord:
    line: int = -1
    date: str = ""
    amount: str = ""
    payee: str = ""
    memo: str = ""
    category: str = ""

    def has_fields(self) -> bool:
        return bool(self.date or self.amount or self.payee or self.memo or self.category)


class _QIFReader:
    """Line-oriented state machine accumulating accounts and records."""

    def __init__(self, currency: str):
        self.currency = currency
        self.result = QIFParseResult()
        self.account: QIFAccount | None = None
        self.transactions: list[ParsedTransaction] = []
        self.in_transactions = False
        self.record = _PendingRecord()

    def feed(self, index: int, line: str) -> None:
        if not line:
            return

        if line == "!Account":
            if self.in_transactions:
                self._finish_record()
            self._finish_account()
            self.account = QIFAccount()
            self.in_transactions = False
            return

        if line.startswith("!Type:"):
            if self.account is None:
                # Transactions without an !Account block
                self.account = QIFAccount()
            if not self.account.type:
                self.account.type = line[len("!Type:") :]
            self.in_transactions = True
            return

        if line == "^":
            if self.in_transactions:
                self._finish_record()
            return

        code, value = line[0], line[1:]

        if not self.in_transactions:
            if self.account is not None:
                if code == "N":
                    self.account.name = value
                elif code == "T":
                    self.account.type = value
            return

        if self.record.line < 0:
            self.record.line = index
        if code == "D":
            self.record.date = value
        elif code == "T":
            self.record.amount = value
        elif code == "P":
            self.record.payee = value
        elif code == "M":
            self.record.memo = value
        elif code == "L":
            self.record.category = value

    def close(self) -> QIFParseResult:
        if self.in_transactions:
            self._finish_record()
        self._finish_account()
        return self.result

    def _skip(self, reason: str) -> None:
        error = RecordError(line=self.record.line, reason=reason)
        self.result.errors.append(error)
        logger.warning(f"[qif] Skipping record at line {error.line}: {reason}")

    def _finish_record(self) -> None:
        record = self.record
        self.record = _PendingRecord()

        if not record.date:
            if record.has_fields():
                self._skip("record has no date")
            return

        date = parse_qif_date(record.date)
        if date is None:
            self._skip(f"unparseable date '{record.date}'")
            return

        signed_amount = parse_qif_amount(record.amount) if record.amount else Decimal("0")
        if signed_amount is None:
            self._skip(f"unparseable amount '{record.amount}'")
            return

        memo = "" if record.memo == NULL_MEMO else record.memo
        description = memo or record.payee or NO_DESCRIPTION
        is_transfer = is_transfer_category(record.category)
        account_name = self.account.name if self.account else ""

        self.transactions.append(
            ParsedTransaction(
                date=date,
                description=description,
                amount=abs(signed_amount),
                currency=self.currency,
                type=TransactionType.from_signed_amount(signed_amount),
                hash=compute_qif_hash(account_name, date, signed_amount, description),
                payee=record.payee,
                memo=memo,
                category="" if is_transfer else record.category,
                is_transfer=is_transfer,
                transfer_account=extract_transfer_account(record.category) if is_transfer else None,
            )
        )

    def _finish_account(self) -> None:
        # Accounts without transactions are dropped
        if self.account is not None and self.transactions:
            self.result.accounts.append(
                QIFAccountData(account=self.account, transactions=self.transactions)
            )
        self.transactions = []


class QIFParser(BaseParser):
    """
    QIF parser.

    QIF carries no currency, so every transaction gets `currency`; the import
    flow replaces it with the currency of the account it is mapped to.
    """

    def __init__(self, currency: str = "EUR"):
        self.currency = currency

    @property
    def name(self) -> str:
        return "qif"

    @property
    def source(self) -> str:
        return QIF_SOURCE

    def parse_qif(self, raw: str | bytes) -> QIFParseResult:
        """
        Parse QIF content grouped by account.

        Args:
            raw: QIF file content

        Returns:
            QIFParseResult with accounts that have at least one transaction
        """
        text = decode_input(self.name, raw)
        reader = _QIFReader(self.currency)
        for index, line in enumerate(split_lines(text)):
            reader.feed(index, line)
        result = reader.close()

        logger.info(
            f"[qif] Parsed {result.total_transactions} transaction(s) "
            f"in {len(result.accounts)} account(s), {len(result.errors)} skipped"
        )
        return result

    def parse_report(
        self, raw: str | bytes, cancel_token: CancellationToken | None = None
    ) -> ParseReport:
        return self.report_from(self.parse_qif(raw))

    def report_from(self, result: QIFParseResult) -> ParseReport:
        """Flatten an already parsed result into a report."""
        report = ParseReport(parser=self.name, source=self.source, errors=list(result.errors))
        for acc in result.accounts:
            report.transactions.extend(acc.transactions)
        report.metadata["accounts"] = [
            {
                "name": acc.account.name,
                "type": acc.account.type,
                "transactions": len(acc.transactions),
            }
            for acc in result.accounts
        ]
        return report
