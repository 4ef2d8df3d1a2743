"""
Parser router - detects the bank/format and picks the parser.
"""

import logging
import re
from collections.abc import Callable

from .base import BaseParser, CancellationToken, FormatError, ParseReport, decode_input
from .csv_parser import DelimitedTextParser, list_mappings
from .pdf_text import extract_statement_text, is_pdf
from .qif_parser import QIFParser
from .statement_parser import StatementParser
from .trustee_parser import TrusteeStatementParser

logger = logging.getLogger(__name__)

PRIVAT_MARKERS = (
    "ПРИВАТБАНК",
    "ПриватБанк",
    "PrivatBank",
    "Privat24",
    "SAMDNWFC",  # Contract number prefix
)

TRUSTEE_MARKERS = (
    "Trustee",
    "TRUSTEE",
    "Trustee Wallet",
    "Per Period:",
    "Card number:",
    "Date and time of operation",
)

PRIVAT_LAYOUT_RE = re.compile(r"\d{2}\.\d{2}\.\d{4}\n\d{2}:\d{2}\n\d{6}\*+\d{4}")
TRUSTEE_LAYOUT_RE = re.compile(r"\d{4}\.\d{2}\.\d{2},\s*\d{2}:\d{2}")

STATEMENT_BANKS = ("privat", "trustee")

_FACTORIES: dict[str, Callable[[], BaseParser]] = {
    "qif": QIFParser,
    "privat": StatementParser,
    "trustee": TrusteeStatementParser,
}


def _has_marker(text: str, markers: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(marker in text or marker.lower() in lowered for marker in markers)


def detect_bank(text: str) -> str:
    """
    Detect which bank produced a statement text.

    Markers decide when exactly one bank matches. Otherwise the row layout is
    checked, and "trustee" is the default.

    Returns:
        "privat" or "trustee"
    """
    has_privat = _has_marker(text, PRIVAT_MARKERS)
    has_trustee = _has_marker(text, TRUSTEE_MARKERS)

    if has_privat and not has_trustee:
        return "privat"
    if has_trustee and not has_privat:
        return "trustee"

    normalized = text.replace("\r\n", "\n")
    if PRIVAT_LAYOUT_RE.search(normalized):
        return "privat"
    if TRUSTEE_LAYOUT_RE.search(normalized):
        return "trustee"

    logger.info("Could not determine statement bank, defaulting to trustee")
    return "trustee"


def available_parsers() -> list[str]:
    return sorted(_FACTORIES) + list_mappings()


def get_parser(name: str) -> BaseParser:
    """
    Build a parser by name.

    Args:
        name: "qif", "privat", "trustee", or a registered CSV mapping name

    Raises:
        ValueError: If no parser has that name
    """
    if name in _FACTORIES:
        return _FACTORIES[name]()
    if name in list_mappings():
        return DelimitedTextParser(name)
    raise ValueError(f"Unknown parser '{name}'. Available: {', '.join(available_parsers())}")


def statement_text(data: str | bytes) -> str:
    """Text of a statement given as PDF bytes, text bytes or text."""
    if isinstance(data, bytes) and is_pdf(data):
        return extract_statement_text(data)
    return decode_input("statement", data)


def parse_statement(
    data: str | bytes,
    bank: str | None = None,
    cancel_token: CancellationToken | None = None,
) -> ParseReport:
    """
    Parse a bank statement (PDF or extracted text).

    Args:
        data: PDF bytes or statement text
        bank: "privat" or "trustee"; detected from the text when omitted
        cancel_token: Optional cancellation signal

    Returns:
        ParseReport with `metadata["bank"]` set
    """
    text = statement_text(data)
    if bank is None:
        bank = detect_bank(text)
        logger.info(f"Detected statement bank: {bank}")
    elif bank not in STATEMENT_BANKS:
        raise FormatError("statement", f"unsupported bank type '{bank}'")

    report = get_parser(bank).parse_report(text, cancel_token)
    report.metadata["bank"] = bank
    return report
