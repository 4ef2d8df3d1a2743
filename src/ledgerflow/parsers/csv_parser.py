"""
Delimited-text (CSV) parser with a bank-specific column-mapping registry.

The header row drives column lookup. Shared logic (sign handling, hash
generation, row skipping) lives in DelimitedTextParser; a bank is added by
registering a ColumnMapping.
"""

import csv
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

import pandas as pd

from ..schemas.dedupe import compute_content_hash
from ..schemas.transaction import ParsedTransaction, TransactionType
from .base import BaseParser, CancellationToken, FormatError, ParseReport, decode_input

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnMapping:
    """How one bank lays out its CSV export."""

    name: str  # Registry key, also the import source name
    date_column: str
    description_column: str
    amount_column: str  # Signed amount in `currency`
    currency: str  # Fixed statement currency
    date_format: str = "%d.%m.%Y %H:%M:%S"
    delimiter: str = ","
    decimal_separator: str = "."

    @property
    def required_columns(self) -> tuple[str, str, str]:
        return (self.date_column, self.description_column, self.amount_column)


# Monobank export header:
# "Date and time",Description,MCC,"Card currency amount, (UAH)","Operation amount",
# "Operation currency","Exchange rate","Commission, (UAH)","Cashback amount, (UAH)",Balance
MONOBANK_MAPPING = ColumnMapping(
    name="monobank",
    date_column="Date and time",
    description_column="Description",
    amount_column="Card currency amount, (UAH)",
    currency="UAH",
)

_MAPPINGS: dict[str, ColumnMapping] = {}


def register_mapping(mapping: ColumnMapping, replace: bool = False) -> None:
    """
    Register a bank column mapping.

    Raises:
        ValueError: If a mapping with that name exists and replace is False
    """
    if mapping.name in _MAPPINGS and not replace:
        raise ValueError(f"Column mapping '{mapping.name}' is already registered")
    _MAPPINGS[mapping.name] = mapping


def get_mapping(name: str) -> ColumnMapping:
    """Look up a registered mapping by name."""
    try:
        return _MAPPINGS[name]
    except KeyError:
        raise ValueError(
            f"Unknown CSV mapping '{name}'. Registered: {', '.join(sorted(_MAPPINGS))}"
        ) from None


def list_mappings() -> list[str]:
    return sorted(_MAPPINGS)


register_mapping(MONOBANK_MAPPING)


def parse_csv_amount(value: str, decimal_separator: str = ".") -> Decimal | None:
    """Parse a signed amount; spaces (including NBSP) are thousands separators."""
    cleaned = value.replace("\u00a0", "").replace(" ", "").strip()
    if decimal_separator == ",":
        cleaned = cleaned.replace(".", "").replace(",", ".")
    if not cleaned:
        return None
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


class DelimitedTextParser(BaseParser):
    """CSV parser driven by a ColumnMapping."""

    def __init__(self, mapping: ColumnMapping | str = MONOBANK_MAPPING):
        self.mapping = get_mapping(mapping) if isinstance(mapping, str) else mapping

    @property
    def name(self) -> str:
        return f"csv:{self.mapping.name}"

    @property
    def source(self) -> str:
        return self.mapping.name

    def _read_frame(self, text: str, report: ParseReport) -> pd.DataFrame:
        """
        Load the table, indexed by data row number.

        Rows with more fields than the header are dropped onto the report; only
        input that is not a table at all raises FormatError.
        """
        delimiter = self.mapping.delimiter
        rows = [row for row in csv.reader(io.StringIO(text), delimiter=delimiter) if row]
        width = len(rows[0]) if rows else 0
        overlong = {number: row for number, row in enumerate(rows[1:]) if len(row) > width}

        try:
            frame = pd.read_csv(
                io.StringIO(text),
                sep=delimiter,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                engine="python",
                on_bad_lines="skip",
            )
        except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
            raise FormatError(self.name, f"unreadable CSV: {e}") from e

        frame.columns = [str(column).strip() for column in frame.columns]
        missing = [c for c in self.mapping.required_columns if c not in frame.columns]
        if missing:
            raise FormatError(self.name, f"missing required column(s): {', '.join(missing)}")

        for number, row in sorted(overlong.items()):
            report.skip(number + 1, f"expected {width} field(s), got {len(row)}", delimiter.join(row))
        kept = [number for number in range(len(rows) - 1) if number not in overlong]
        if len(kept) == len(frame):
            frame.index = kept
        # Short rows leave NaN in the trailing columns
        return frame.fillna("")

    def parse_report(
        self, raw: str | bytes, cancel_token: CancellationToken | None = None
    ) -> ParseReport:
        """
        Parse a bank CSV export.

        Rows with extra fields, rows missing a required field, and rows whose
        date or amount cannot be parsed are skipped with a warning.
        """
        text = decode_input(self.name, raw)
        report = ParseReport(parser=self.name, source=self.source)
        frame = self._read_frame(text, report)
        mapping = self.mapping

        for index, row in zip(frame.index, frame.to_dict("records")):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled(self.name, report.transactions)

            line = index + 1  # Header is line 0
            date_text = (row.get(mapping.date_column) or "").strip()
            description = (row.get(mapping.description_column) or "").strip()
            amount_text = (row.get(mapping.amount_column) or "").strip()

            if not date_text or not description or not amount_text:
                report.skip(line, "missing required field")
                continue

            try:
                date = datetime.strptime(date_text, mapping.date_format)
            except ValueError:
                report.skip(line, f"unparseable date '{date_text}'", date_text)
                continue

            signed_amount = parse_csv_amount(amount_text, mapping.decimal_separator)
            if signed_amount is None:
                report.skip(line, f"unparseable amount '{amount_text}'", amount_text)
                continue

            amount = abs(signed_amount)
            report.transactions.append(
                ParsedTransaction(
                    date=date,
                    description=description,
                    amount=amount,
                    currency=mapping.currency,
                    type=TransactionType.from_signed_amount(signed_amount),
                    hash=compute_content_hash(date, description, amount, mapping.currency),
                )
            )

        logger.info(
            f"[{self.name}] Parsed {len(report.transactions)} transaction(s), "
            f"{report.skipped} skipped"
        )
        return report
