"""
utils/validation_utils.py

Purpose: Input validation

- OTP code parsing (separators stripped, 4-6 digits)
- Permissive email detection
- Inline bearer-token detection
- Credential length checks for the web onboarding form
- Input sanitization
"""

import html
import re
from typing import Optional

from utils.constants import MAX_CREDENTIAL_LENGTH, MIN_CREDENTIAL_LENGTH

OTP_SEPARATORS = re.compile(r"[\s\-.]")
OTP_PATTERN = re.compile(r"^\d{4,6}$")
EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w.-]+\.\w+", re.IGNORECASE)
MAGIC_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{20,100}$")

# JWTs start with a base64url encoded '{"' header
INLINE_TOKEN_PREFIX = "eyJ"
INLINE_TOKEN_MIN_LENGTH = 100


def parse_otp_code(text: str) -> Optional[str]:
    """
    Extracts an OTP code attempt from user input.

    Spaces, dashes and dots are stripped first, so "123 456",
    "123-456" and "12.34.56" are all read as "123456".

    Args:
        text: Raw message text

    Returns:
        The 4-6 digit code, or None if the input is not a code attempt
    """
    if not text:
        return None

    stripped = OTP_SEPARATORS.sub("", text.strip())
    if OTP_PATTERN.match(stripped):
        return stripped
    return None


def looks_like_email(text: str) -> bool:
    """
    Deliberately permissive: an '@' and a '.' are enough.
    The platform is the real validator.
    """
    if not text:
        return False
    return "@" in text and "." in text


def extract_email(text: str) -> Optional[str]:
    """Pulls the first email-shaped substring out of free text, lowercased."""
    if not text:
        return None
    match = EMAIL_PATTERN.search(text)
    return match.group(0).lower() if match else None


def looks_like_inline_token(text: str) -> bool:
    """
    Checks whether a message is a pasted bearer token.

    A token has the JWT prefix, is longer than INLINE_TOKEN_MIN_LENGTH and
    has three dot-separated segments.
    """
    if not text:
        return False

    candidate = text.strip()
    if not candidate.startswith(INLINE_TOKEN_PREFIX) or len(candidate) <= INLINE_TOKEN_MIN_LENGTH:
        return False
    if any(ch.isspace() for ch in candidate):
        return False

    segments = candidate.split(".")
    return len(segments) == 3 and all(segments)


def validate_credential_length(value: Optional[str]) -> bool:
    """Web onboarding accepts pasted credentials of 10 to 500 characters."""
    if not value:
        return False
    return MIN_CREDENTIAL_LENGTH <= len(value.strip()) <= MAX_CREDENTIAL_LENGTH


def is_valid_magic_token(token: Optional[str]) -> bool:
    """Magic-link tokens are URL-safe base64 (43 chars for 32 random bytes)."""
    if not token:
        return False
    return bool(MAGIC_TOKEN_PATTERN.match(token))


def sanitize_input(text: str, max_length: int = 4000) -> str:
    """
    Sanitizes user input by trimming whitespace and limiting length.

    Args:
        text: Input text
        max_length: Maximum allowed length

    Returns:
        Sanitized text
    """
    if not text:
        return ""

    text = text.strip()
    if len(text) > max_length:
        text = text[:max_length]
    return text


def escape_for_html(value: str) -> str:
    """Escapes a value before it is embedded in an HTML page or attribute."""
    return html.escape(value or "", quote=True)
