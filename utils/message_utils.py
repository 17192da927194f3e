"""
utils/message_utils.py

Purpose: Text helpers for outbound messages and logs

- Phone redaction for logs (PII)
- Markdown clean-up for text-message replies
- Splitting model replies into separate text bubbles
"""

import re
from typing import List, Optional

from utils.constants import RESPONSE_PART_DELIMITER


def redact_phone(phone: Optional[str]) -> str:
    """
    Redacts a phone number for safe logging.
    "+14155551234" -> "***1234"
    """
    if not phone or len(phone) <= 4:
        return "****"
    return "***" + phone[-4:]


_BULLET = re.compile(r"\n\s*-\s*")
_UNDERSCORE_EMPHASIS = re.compile(r"(?<!\w)_([^_]+)_(?!\w)")
_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_STAR_EMPHASIS = re.compile(r"(?<!\w)\*([^*]+)\*(?!\w)")
_MULTI_SPACE = re.compile(r"  +")
_MULTI_NEWLINE = re.compile(r"\n{3,}")


def clean_response(text: str) -> str:
    """Strips markdown artifacts that render literally in iMessage/SMS."""
    text = _BULLET.sub(" - ", text)
    text = _UNDERSCORE_EMPHASIS.sub(r"\1", text)
    text = _BOLD.sub(r"\1", text)
    text = _STAR_EMPHASIS.sub(r"\1", text)
    text = _MULTI_SPACE.sub(" ", text)
    text = _MULTI_NEWLINE.sub("\n\n", text)
    return text.strip()


def split_parts(text: Optional[str]) -> List[str]:
    """Splits a reply on the part delimiter, cleaning each part and dropping empties."""
    if not text:
        return []
    parts = [clean_response(part) for part in text.split(RESPONSE_PART_DELIMITER)]
    return [part for part in parts if part]


def flatten_for_history(text: str) -> str:
    """Joins delimited reply parts into one line for conversation history."""
    return " ".join(part.strip() for part in text.split(RESPONSE_PART_DELIMITER) if part.strip())
