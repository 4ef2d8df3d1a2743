"""
Format parsers.

Provides:
- QIFParser: Quicken Interchange Format (HomeBank exports)
- DelimitedTextParser: bank CSV exports via a column-mapping registry
- StatementParser: PrivatBank free-text statements
- TrusteeStatementParser: Trustee statements
- Router: bank detection and parser lookup

Every parser returns canonical ParsedTransaction records in input order.
"""

from .base import (
    BaseParser,
    CancellationToken,
    FormatError,
    ParseCancelled,
    ParserError,
    ParseReport,
    RecordError,
)
from .csv_parser import (
    MONOBANK_MAPPING,
    ColumnMapping,
    DelimitedTextParser,
    get_mapping,
    register_mapping,
)
from .pdf_text import extract_statement_text
from .qif_parser import QIFAccount, QIFAccountData, QIFParser, QIFParseResult
from .router import detect_bank, get_parser, parse_statement
from .statement_parser import StatementParser, tokenize_statement
from .trustee_parser import TrusteeStatementParser

__all__ = [
    "BaseParser",
    "CancellationToken",
    "ParseReport",
    "RecordError",
    "ParserError",
    "FormatError",
    "ParseCancelled",
    "QIFParser",
    "QIFParseResult",
    "QIFAccount",
    "QIFAccountData",
    "DelimitedTextParser",
    "ColumnMapping",
    "MONOBANK_MAPPING",
    "register_mapping",
    "get_mapping",
    "StatementParser",
    "tokenize_statement",
    "TrusteeStatementParser",
    "extract_statement_text",
    "detect_bank",
    "get_parser",
    "parse_statement",
]
