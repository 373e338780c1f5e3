# services/file_parser.py
import base64
import io
import logging
import os
from dataclasses import dataclass, field
from typing import List

import docx
import fitz

from utils.sanitization import clean_document_text

logger = logging.getLogger(__name__)

MAX_PAGE_IMAGES = 5
PAGE_RENDER_SCALE = 1.5

SUPPORTED_EXTENSIONS = (".pdf", ".docx", ".txt")


class FileParseError(Exception):
    """The uploaded file is unsupported or could not be read."""


@dataclass
class ParsedFile:
    name: str
    text: str
    images: List[str] = field(default_factory=list)


def _parse_pdf(data: bytes) -> ParsedFile:
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        if doc.page_count == 0:
            raise FileParseError("PDF has no pages")
        text = "\n".join(page.get_text("text") for page in doc)
        images = []
        matrix = fitz.Matrix(PAGE_RENDER_SCALE, PAGE_RENDER_SCALE)
        for page in doc:
            if len(images) >= MAX_PAGE_IMAGES:
                break
            pix = page.get_pixmap(matrix=matrix, alpha=False)
            b64 = base64.b64encode(pix.tobytes("jpeg")).decode()
            images.append(f"data:image/jpeg;base64,{b64}")
    finally:
        doc.close()
    return ParsedFile(name="", text=text, images=images)


def _parse_docx(data: bytes) -> ParsedFile:
    document = docx.Document(io.BytesIO(data))
    text = "\n".join(p.text for p in document.paragraphs)
    return ParsedFile(name="", text=text)


def _parse_txt(data: bytes) -> ParsedFile:
    return ParsedFile(name="", text=data.decode("utf-8", errors="replace"))


_PARSERS = {
    ".pdf": _parse_pdf,
    ".docx": _parse_docx,
    ".txt": _parse_txt,
}


def parse_file(filename: str, data: bytes) -> ParsedFile:
    """
    Extract text (and, for PDFs, up to MAX_PAGE_IMAGES rendered pages as
    JPEG data URLs) from an uploaded file. Empty extracted text is not an
    error here; the orchestrator rejects it.

    Raises:
        FileParseError: unsupported extension or unreadable content.
    """
    ext = os.path.splitext(filename or "")[1].lower()
    parser = _PARSERS.get(ext)
    if parser is None:
        raise FileParseError(f"Unsupported file type: {ext or filename}")

    try:
        parsed = parser(data)
    except Exception as e:
        logger.warning(f"Failed to parse {filename}: {e}")
        raise FileParseError(f"Could not read {filename}: {e}") from e

    parsed.name = filename
    parsed.text = clean_document_text(parsed.text)
    logger.info(f"Parsed {filename}: {len(parsed.text)} chars, {len(parsed.images)} page image(s)")
    return parsed
