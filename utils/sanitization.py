# utils/sanitization.py
from typing import Optional
import re

CONTROL_CHARS = r"[\x00-\x08\x0b-\x0c\x0e-\x1f\x7f-\x9f]"


def clean_text(value: Optional[str]) -> str:
    """Strip control characters and collapse whitespace to single spaces."""
    if value is None:
        return ""

    text = re.sub(CONTROL_CHARS, "", value)
    text = text.strip()
    text = re.sub(r"\s+", " ", text)

    return text


def clean_document_text(value: Optional[str]) -> str:
    """
    Like clean_text but keeps line breaks, which prompts use to find
    section boundaries in extracted documents.
    """
    if value is None:
        return ""

    text = re.sub(CONTROL_CHARS, "", value)
    text = re.sub(r"[ \t\f\v]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text)
    return text.strip()


def is_nonempty_text(value: Optional[str]) -> bool:
    return bool(clean_text(value))


def truncate_for_prompt(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]
