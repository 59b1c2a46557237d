"""Plain-text extraction from uploaded CV files (PDF, DOCX, TXT)."""

import re
from dataclasses import dataclass
from io import BytesIO
from zipfile import BadZipFile

import docx
from docx.opc.exceptions import PackageNotFoundError
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from app.core.logger import logger

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TXT = "text/plain"


class TextExtractionError(Exception):
    """The file could not be turned into usable text."""


@dataclass
class ParsedDocument:
    text: str
    num_pages: int | None = None


def _clean(text: str) -> str:
    text = text.replace("\x00", "")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _extract_pdf(data: bytes) -> ParsedDocument:
    try:
        reader = PdfReader(BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, ValueError, KeyError) as e:
        raise TextExtractionError(f"Could not read PDF: {e}") from e
    return ParsedDocument(text="\n".join(pages), num_pages=len(pages))


def _extract_docx(data: bytes) -> ParsedDocument:
    try:
        document = docx.Document(BytesIO(data))
    except (PackageNotFoundError, BadZipFile, ValueError, KeyError) as e:
        raise TextExtractionError(f"Could not read DOCX: {e}") from e

    lines = [p.text for p in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            lines.append(" | ".join(cell.text for cell in row.cells))
    return ParsedDocument(text="\n".join(lines))


def _extract_txt(data: bytes) -> ParsedDocument:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        text = data.decode("latin-1")
    return ParsedDocument(text=text)


_EXTRACTORS = {
    PDF: _extract_pdf,
    DOCX: _extract_docx,
    TXT: _extract_txt,
}


def extract_text(data: bytes, mime_type: str) -> ParsedDocument:
    """Extract normalized text from a file buffer.

    Raises:
        TextExtractionError: empty buffer, unsupported type, or no text found
            (e.g. a scanned PDF with no text layer).
    """
    if not data:
        raise TextExtractionError("File is empty")

    extractor = _EXTRACTORS.get(mime_type)
    if extractor is None:
        raise TextExtractionError(f"Unsupported file type: {mime_type}")

    parsed = extractor(data)
    parsed.text = _clean(parsed.text)
    if not parsed.text:
        raise TextExtractionError("No text could be extracted from the file")

    logger.info(f"Extracted {len(parsed.text)} chars from {mime_type} (pages={parsed.num_pages})")
    return parsed
