"""
Free-text statement parser (PrivatBank statement text).

Works on lines extracted from a statement document, with no column alignment.
A transaction block looks like:

    22.11.2025                  date
    20:35                       time
    545708******2220            card        (noise)
    Contract No. SAMDNWFC0001   contract    (noise)
    316                         reference   (noise)
    from 25.06.2025             period      (noise)
    KYIVSKYI METROPOLITEN,      description
    KYIV                        description
    -8,00                       amount (comma decimal, space thousands)
    UAH                         currency

Parsing runs in two stages: `tokenize_statement` classifies every line, then
`StatementParser` walks the tokens with a small state machine. The failure unit
is one block: a block that reaches the next date/time line before an amount
line followed by a currency line is skipped, and scanning resumes on the line
after its date.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum

from ..schemas.dedupe import compute_content_hash
from ..schemas.transaction import ParsedTransaction, TransactionType
from .base import (
    BaseParser,
    CancellationToken,
    ParseReport,
    decode_input,
    split_lines,
)

logger = logging.getLogger(__name__)

PRIVAT_SOURCE = "privat"

# Lines scanned for the amount, counted from the first description line
DESCRIPTION_LOOKAHEAD = 20

DATE_RE = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})$")
TIME_RE = re.compile(r"^(\d{2}):(\d{2})$")
CARD_RE = re.compile(r"^\d{6}\*+\d{4}$")
CONTRACT_RE = re.compile(r"^Contract No\.", re.IGNORECASE)
CONTRACT_ID_RE = re.compile(r"SAMDNWFC\d+")
REFERENCE_RE = re.compile(r"^\d{1,4}$")
FROM_DATE_RE = re.compile(r"^from\s+\d{2}\.\d{2}\.\d{4}$", re.IGNORECASE)
AMOUNT_ONLY_RE = re.compile(r"^([-+]?\d+(?:\s\d{3})*,\d{2})$")
TEXT_WITH_AMOUNT_RE = re.compile(r"^(.+?)\s+([-+]?\d+(?:\s\d{3})*,\d{2})$")
CURRENCY_RE = re.compile(r"^([A-Z]{3})$")
TRAILING_COMMA_RE = re.compile(r",\s*$")

# Header fields
CARD_NUMBER_RE = re.compile(r"(\d{6}\*+\d{4})")
PERIOD_RE = re.compile(r"from\s+(\d{2}\.\d{2}\.\d{4})")


class LineKind(str, Enum):
    """Structural role of a statement line."""

    BLANK = "blank"
    DATE = "date"
    TIME = "time"
    NOISE = "noise"  # card, contract, reference, period boilerplate
    AMOUNT = "amount"  # amount alone, or trailing text + amount
    CURRENCY = "currency"
    TEXT = "text"


@dataclass(frozen=True)
class StatementLine:
    """A classified statement line."""

    index: int
    text: str
    kind: LineKind
    # Amount lines only
    amount: str | None = None
    amount_prefix: str | None = None
    # Noise is decided independently so amount-like noise still reads as noise
    is_noise: bool = False

    @property
    def is_amount(self) -> bool:
        return self.amount is not None


def _is_noise(text: str) -> bool:
    return bool(
        CARD_RE.match(text)
        or CONTRACT_RE.match(text)
        or "Contract No." in text
        or REFERENCE_RE.match(text)
        or FROM_DATE_RE.match(text)
        or CONTRACT_ID_RE.search(text)
    )


def classify_line(index: int, text: str) -> StatementLine:
    """Classify one stripped line."""
    if not text:
        return StatementLine(index, text, LineKind.BLANK)
    if DATE_RE.match(text):
        return StatementLine(index, text, LineKind.DATE)
    if TIME_RE.match(text):
        return StatementLine(index, text, LineKind.TIME)

    noise = _is_noise(text)

    match = AMOUNT_ONLY_RE.match(text)
    if match:
        return StatementLine(index, text, LineKind.AMOUNT, amount=match.group(1), is_noise=noise)
    match = TEXT_WITH_AMOUNT_RE.match(text)
    if match:
        return StatementLine(
            index,
            text,
            LineKind.AMOUNT,
            amount=match.group(2),
            amount_prefix=match.group(1),
            is_noise=noise,
        )

    if noise:
        return StatementLine(index, text, LineKind.NOISE, is_noise=True)
    if CURRENCY_RE.match(text):
        return StatementLine(index, text, LineKind.CURRENCY)
    return StatementLine(index, text, LineKind.TEXT)


def tokenize_statement(text: str) -> list[StatementLine]:
    """Split statement text into classified lines (input order preserved)."""
    return [classify_line(index, line) for index, line in enumerate(split_lines(text))]


def parse_statement_amount(value: str) -> Decimal | None:
    """Convert '1 000,50' style amounts to Decimal."""
    try:
        return Decimal(re.sub(r"\s", "", value).replace(",", "."))
    except InvalidOperation:
        return None


class _BlockState(Enum):
    SKIP_NOISE = "skip_noise"
    DESCRIPTION = "description"
    DONE = "done"


@dataclass
class _BlockResult:
    transaction: ParsedTransaction | None
    next_index: int  # First line after the block (only meaningful on success)
    reason: str = ""


class StatementParser(BaseParser):
    """
    PrivatBank free-text statement parser.

    Output order follows the order of blocks in the text.
    """

    lookahead = DESCRIPTION_LOOKAHEAD

    @property
    def name(self) -> str:
        return "privat"

    @property
    def source(self) -> str:
        return PRIVAT_SOURCE

    def parse_report(
        self, raw: str | bytes, cancel_token: CancellationToken | None = None
    ) -> ParseReport:
        text = decode_input(self.name, raw)
        report = ParseReport(parser=self.name, source=self.source)

        card_match = CARD_NUMBER_RE.search(text)
        period_match = PERIOD_RE.search(text)
        report.metadata["card_number"] = card_match.group(1) if card_match else ""
        report.metadata["period"] = period_match.group(1) if period_match else ""

        tokens = tokenize_statement(text)
        i = 0
        while i < len(tokens):
            token = tokens[i]
            if token.kind is not LineKind.DATE:
                i += 1
                continue

            if cancel_token is not None:
                cancel_token.raise_if_cancelled(self.name, report.transactions)

            if i + 1 >= len(tokens) or tokens[i + 1].kind is not LineKind.TIME:
                logger.debug(f"[privat] Date at line {i} not followed by a time, ignoring")
                i += 1
                continue

            block = self._read_block(tokens, i)
            if block.transaction is None:
                report.skip(i, block.reason, token.text)
                i += 1
                continue

            report.transactions.append(block.transaction)
            i = block.next_index

        logger.info(
            f"[privat] Parsed {len(report.transactions)} transaction(s), "
            f"{report.skipped} block(s) skipped"
        )
        return report

    def _read_block(self, tokens: list[StatementLine], start: int) -> _BlockResult:
        """
        Read one transaction block whose date line is at `start`.

        The time line is at start + 1. Noise lines are skipped, then description
        lines accumulate until an amount line followed by a currency line.
        """
        day, month, year = DATE_RE.match(tokens[start].text).groups()
        hour, minute = TIME_RE.match(tokens[start + 1].text).groups()
        try:
            date = datetime(int(year), int(month), int(day), int(hour), int(minute))
        except ValueError:
            return _BlockResult(None, start + 1, f"invalid date/time '{tokens[start].text}'")

        state = _BlockState.SKIP_NOISE
        description_start = start + 2
        j = description_start
        parts: list[str] = []

        while state is not _BlockState.DONE:
            if state is _BlockState.SKIP_NOISE:
                if j < len(tokens) and tokens[j].is_noise:
                    j += 1
                    continue
                description_start = j
                state = _BlockState.DESCRIPTION
                continue

            # DESCRIPTION
            if j >= len(tokens) or j >= description_start + self.lookahead:
                state = _BlockState.DONE
                continue

            token = tokens[j]
            if self._starts_block(tokens, j):
                return _BlockResult(None, start + 1, "next block started before amount/currency")
            if token.is_amount:
                if token.amount_prefix:
                    parts.append(token.amount_prefix)
                following = tokens[j + 1] if j + 1 < len(tokens) else None
                if following is not None and following.kind is LineKind.CURRENCY:
                    transaction = self._build(date, parts, token.amount, following.text)
                    if transaction is None:
                        return _BlockResult(None, start + 1, f"unparseable amount '{token.amount}'")
                    return _BlockResult(transaction, j + 2)
            elif token.kind is not LineKind.BLANK and token.kind is not LineKind.DATE:
                parts.append(token.text)
            j += 1

        return _BlockResult(
            None,
            start + 1,
            f"no amount/currency within {self.lookahead} lines of the description",
        )

    @staticmethod
    def _starts_block(tokens: list[StatementLine], index: int) -> bool:
        return (
            tokens[index].kind is LineKind.DATE
            and index + 1 < len(tokens)
            and tokens[index + 1].kind is LineKind.TIME
        )

    def _build(
        self, date: datetime, parts: list[str], amount_text: str, currency: str
    ) -> ParsedTransaction | None:
        signed_amount = parse_statement_amount(amount_text)
        if signed_amount is None:
            return None

        description = TRAILING_COMMA_RE.sub("", " ".join(parts).strip())
        amount = abs(signed_amount)
        return ParsedTransaction(
            date=date,
            description=description,
            amount=amount,
            currency=currency,
            type=TransactionType.from_signed_amount(signed_amount),
            hash=compute_content_hash(date, description, amount, currency),
        )
