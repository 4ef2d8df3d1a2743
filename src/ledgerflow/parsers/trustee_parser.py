"""
Trustee statement parser.

Rows sit between the "Date and time of operation" table header and the
"The document is electronically generated" footer:

    2025.11.01, 15:41147 VELMART 31 KIEV UKR-2.18 EUR

There is no separator between the time and the description. Long
descriptions wrap; the amount and currency then close a later line.
"""

import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation

from ..schemas.dedupe import compute_content_hash
from ..schemas.transaction import ParsedTransaction, TransactionType
from .base import BaseParser, CancellationToken, ParseReport, decode_input, split_lines

logger = logging.getLogger(__name__)

TRUSTEE_SOURCE = "trustee"

# Continuation lines scanned for the amount of a wrapped row
CONTINUATION_LOOKAHEAD = 10

SECTION_START_MARKERS = ("Date and time of", "operation")
FOOTER_MARKER = "The document is electronically generated"

ROW_RE = re.compile(r"^(\d{4}\.\d{2}\.\d{2}),\s*(\d{2}:\d{2})(.+?)([-+]?\d+\.?\d*)\s+([A-Z]{3})$")
ROW_START_RE = re.compile(r"^(\d{4}\.\d{2}\.\d{2}),\s*(\d{2}:\d{2})(.+)$")
NEXT_ROW_RE = re.compile(r"^\d{4}\.\d{2}\.\d{2},\s*\d{2}:\d{2}")
CONTINUATION_AMOUNT_RE = re.compile(r"^(.+?)\s+([-+]?\d+\.?\d*)\s+([A-Z]{3})$")

PERIOD_RE = re.compile(r"Per Period:\s*(\d{4}\.\d{2}\.\d{2}\s*-\s*\d{4}\.\d{2}\.\d{2})")
CARD_NUMBER_RE = re.compile(r"Card number:\s*(\*+\d+)")


def _parse_row_date(date_text: str, time_text: str) -> datetime | None:
    try:
        return datetime.strptime(f"{date_text} {time_text}", "%Y.%m.%d %H:%M")
    except ValueError:
        return None


class TrusteeStatementParser(BaseParser):
    """Trustee statement parser."""

    @property
    def name(self) -> str:
        return "trustee"

    @property
    def source(self) -> str:
        return TRUSTEE_SOURCE

    def parse_report(
        self, raw: str | bytes, cancel_token: CancellationToken | None = None
    ) -> ParseReport:
        text = decode_input(self.name, raw)
        report = ParseReport(parser=self.name, source=self.source)

        period_match = PERIOD_RE.search(text)
        card_match = CARD_NUMBER_RE.search(text)
        report.metadata["period"] = period_match.group(1) if period_match else ""
        report.metadata["card_number"] = card_match.group(1) if card_match else ""

        lines = split_lines(text)
        in_section = False
        i = 0
        while i < len(lines):
            line = lines[i]

            if FOOTER_MARKER in line:
                break

            is_row = NEXT_ROW_RE.match(line) is not None
            if not is_row and any(marker in line for marker in SECTION_START_MARKERS):
                in_section = True
                i += 1
                continue

            if not in_section or not is_row:
                i += 1
                continue

            if cancel_token is not None:
                cancel_token.raise_if_cancelled(self.name, report.transactions)

            match = ROW_RE.match(line)
            if match:
                date_text, time_text, description, amount_text, currency = match.groups()
                self._append(report, i, date_text, time_text, description, amount_text, currency)
                i += 1
                continue

            i = self._read_wrapped_row(report, lines, i)

        logger.info(
            f"[trustee] Parsed {len(report.transactions)} transaction(s), "
            f"{report.skipped} row(s) skipped"
        )
        return report

    def _read_wrapped_row(self, report: ParseReport, lines: list[str], start: int) -> int:
        """Read a row whose amount wraps onto a later line. Returns the next index."""
        match = ROW_START_RE.match(lines[start])
        if match is None:
            report.skip(start, "row without description", lines[start])
            return start + 1

        date_text, time_text, description = match.groups()
        j = start + 1
        while j < len(lines) and j < start + CONTINUATION_LOOKAHEAD:
            next_line = lines[j]
            if NEXT_ROW_RE.match(next_line) or FOOTER_MARKER in next_line:
                break

            amount_match = CONTINUATION_AMOUNT_RE.match(next_line)
            if amount_match:
                tail, amount_text, currency = amount_match.groups()
                self._append(
                    report,
                    start,
                    date_text,
                    time_text,
                    f"{description} {tail}",
                    amount_text,
                    currency,
                )
                return j + 1
            if next_line:
                description = f"{description} {next_line}"
            j += 1

        report.skip(start, "no amount/currency found for wrapped row", lines[start])
        return start + 1

    def _append(
        self,
        report: ParseReport,
        line: int,
        date_text: str,
        time_text: str,
        description: str,
        amount_text: str,
        currency: str,
    ) -> None:
        date = _parse_row_date(date_text, time_text)
        if date is None:
            report.skip(line, f"invalid date '{date_text}, {time_text}'")
            return
        try:
            signed_amount = Decimal(amount_text)
        except InvalidOperation:
            report.skip(line, f"unparseable amount '{amount_text}'")
            return

        description = description.strip()
        amount = abs(signed_amount)
        report.transactions.append(
            ParsedTransaction(
                date=date,
                description=description,
                amount=amount,
                currency=currency,
                type=TransactionType.from_signed_amount(signed_amount),
                hash=compute_content_hash(date, description, amount, currency),
            )
        )
