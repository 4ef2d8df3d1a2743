"""
Base parser interface and common types.

Error taxonomy:
- RecordError: one malformed row/block. Logged, skipped, parsing continues.
- FormatError: the whole input is unreadable as the declared format. Raised.
- ParseCancelled: a cancellation signal was observed between blocks. Raised.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..schemas.transaction import ParsedTransaction

logger = logging.getLogger(__name__)


class ParserError(Exception):
    """Base exception for parser errors."""

    pass


class FormatError(ParserError):
    """Input cannot be interpreted as the target format at all."""

    def __init__(self, parser: str, message: str):
        self.parser = parser
        self.message = message
        super().__init__(f"{parser}: {message}")


class ParseCancelled(ParserError):
    """Parsing stopped because the cancellation token was set."""

    def __init__(self, parser: str, partial: list[ParsedTransaction]):
        self.parser = parser
        self.partial = partial
        super().__init__(f"{parser}: cancelled after {len(partial)} transaction(s)")


@dataclass
class RecordError:
    """A single skipped record. Never raised; collected on the report."""

    line: int  # 0-based line/row index where the record starts
    reason: str
    raw: str = ""

    def __str__(self) -> str:
        return f"line {self.line}: {self.reason}"


class CancellationToken:
    """Cooperative cancellation signal checked between transaction blocks."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, parser: str, partial: list[ParsedTransaction]) -> None:
        """Raise ParseCancelled carrying the transactions parsed so far."""
        if self._event.is_set():
            raise ParseCancelled(parser, list(partial))


@dataclass
class ParseReport:
    """Result of a parser run."""

    parser: str
    source: str
    transactions: list[ParsedTransaction] = field(default_factory=list)
    errors: list[RecordError] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def skipped(self) -> int:
        return len(self.errors)

    def skip(self, line: int, reason: str, raw: str = "") -> None:
        """Record a skipped record and log it."""
        self.errors.append(RecordError(line=line, reason=reason, raw=raw))
        logger.warning(f"[{self.parser}] Skipping record at line {line}: {reason}")


def decode_input(parser: str, raw: str | bytes) -> str:
    """
    Decode raw parser input to text.

    Raises:
        FormatError: If bytes are not valid UTF-8
    """
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise FormatError(parser, f"input is not valid UTF-8 text: {e}") from e


def split_lines(text: str) -> list[str]:
    """Split text into stripped lines (blank lines kept, so indices stay stable)."""
    return [line.strip() for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n")]


class BaseParser(ABC):
    """
    Base class for all format parsers.

    Each parser converts one raw export format into canonical
    ParsedTransaction records, preserving input order.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Parser name for logging and provenance."""
        pass

    @property
    @abstractmethod
    def source(self) -> str:
        """Import-history source name (dedup scope)."""
        pass

    @abstractmethod
    def parse_report(
        self, raw: str | bytes, cancel_token: CancellationToken | None = None
    ) -> ParseReport:
        """
        Parse raw input into a report with transactions and skipped records.

        Args:
            raw: File content
            cancel_token: Optional cancellation signal

        Returns:
            ParseReport

        Raises:
            FormatError: If the input cannot be interpreted at all
        """
        pass

    def parse(
        self, raw: str | bytes, cancel_token: CancellationToken | None = None
    ) -> list[ParsedTransaction]:
        """Parse raw input into canonical transactions."""
        return self.parse_report(raw, cancel_token).transactions
