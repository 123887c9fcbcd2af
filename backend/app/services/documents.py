"""Text extraction from machine manuals and notices stored in the data directory."""

import logging
import re
from pathlib import Path

import pdfplumber
from pdfminer.pdfparser import PDFSyntaxError
from pdfplumber.utils.exceptions import PdfminerException

from app.core.sandbox import SandboxError, resolve_sandboxed_path

logger = logging.getLogger(__name__)

MAX_PDF_PAGES = 15

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F-\x9F]")
_WHITESPACE = re.compile(r"\s+")


class DocumentError(Exception):
    pass


def clean_text(text: str) -> str:
    text = _CONTROL_CHARS.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def _read_pdf(path: Path, max_chars: int) -> str:
    pages: list[str] = []
    total = 0
    try:
        with pdfplumber.open(path) as pdf:
            for page_number, page in enumerate(pdf.pages[:MAX_PDF_PAGES], start=1):
                text = clean_text(page.extract_text() or "")
                if not text:
                    continue
                pages.append(f"[Page {page_number}] {text}")
                total += len(pages[-1])
                if total > max_chars:
                    break
    except (PdfminerException, PDFSyntaxError) as e:
        raise DocumentError(f"Could not parse PDF {path.name}: {e}") from e
    return "\n".join(pages)


def extract_document_text(relative_path: str, max_chars: int = 8000) -> str:
    """Return the cleaned text of a stored document, truncated to max_chars.

    Raises DocumentError if the file is missing, outside the data directory,
    or unreadable.
    """
    try:
        path = resolve_sandboxed_path(relative_path)
    except SandboxError as e:
        raise DocumentError(str(e)) from e

    if not path.is_file():
        raise DocumentError(f"Document not found: {relative_path}")

    if path.suffix.lower() == ".pdf":
        text = _read_pdf(path, max_chars)
    else:
        try:
            text = clean_text(path.read_text(errors="replace"))
        except OSError as e:
            raise DocumentError(f"Could not read {relative_path}: {e}") from e

    logger.debug(f"Extracted {len(text)} characters from {relative_path}")
    return text[:max_chars]
