"""
Statement document text extraction.

Statement parsers work on plain text; this module turns PDF bytes into that
text with pdfplumber, one page after another.
"""

import io
import logging

import pdfplumber

from .base import FormatError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


def is_pdf(data: bytes) -> bool:
    """Check for the PDF header (leading whitespace tolerated)."""
    return data.lstrip()[:4] == PDF_MAGIC


def extract_statement_text(data: bytes) -> str:
    """
    Extract the text layer of a statement PDF.

    Args:
        data: PDF file bytes

    Returns:
        Text of all pages joined by newlines

    Raises:
        FormatError: If the bytes are not a readable PDF or carry no text layer
    """
    if not is_pdf(data):
        raise FormatError("pdf", "input is not a PDF document")

    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as e:
        raise FormatError("pdf", f"unreadable PDF: {e}") from e

    text = "\n".join(pages)
    if not text.strip():
        raise FormatError("pdf", "document has no text layer (scanned image?)")

    logger.debug(f"Extracted {len(text)} characters from {len(pages)} PDF page(s)")
    return text
