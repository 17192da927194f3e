import pytest

from utils.message_utils import clean_response, flatten_for_history, redact_phone, split_parts
from utils.time_utils import time_to_minutes
from utils.validation_utils import (
    escape_for_html,
    extract_email,
    is_valid_magic_token,
    looks_like_email,
    looks_like_inline_token,
    parse_otp_code,
    sanitize_input,
    validate_credential_length,
)

from conftest import INLINE_TOKEN


@pytest.mark.parametrize("text, expected", [
    ("123456", "123456"),
    ("123 456", "123456"),
    ("123-456", "123456"),
    ("12.34.56", "123456"),
    (" 4321 ", "4321"),
    ("123", None),
    ("1234567", None),
    ("my code is 123456", None),
    ("", None),
])
def test_parse_otp_code(text, expected):
    assert parse_otp_code(text) == expected


def test_inline_token_detection():
    assert looks_like_inline_token(INLINE_TOKEN)
    assert looks_like_inline_token(f"  {INLINE_TOKEN}\n")
    # Too short
    assert not looks_like_inline_token("eyJabc.def.ghi")
    # Two segments
    assert not looks_like_inline_token("eyJ" + "a" * 120 + ".sig")
    # Not a JWT prefix
    assert not looks_like_inline_token("abc" + "a" * 100 + ".b.c")
    # Prose that happens to contain a token
    assert not looks_like_inline_token(f"here you go {INLINE_TOKEN}")


def test_email_checks_are_permissive():
    assert looks_like_email("sam@example.com")
    assert looks_like_email("a@b.c")
    assert not looks_like_email("no email here")
    assert extract_email("sure, it's Sam.Lee+resy@Example.com thanks") == "sam.lee+resy@example.com"
    assert extract_email("nope") is None


def test_credential_length_bounds():
    assert validate_credential_length("x" * 10)
    assert validate_credential_length("x" * 500)
    assert not validate_credential_length("x" * 9)
    assert not validate_credential_length("x" * 501)
    assert not validate_credential_length(None)


def test_magic_token_shape():
    assert is_valid_magic_token("A" * 43)
    assert not is_valid_magic_token("A" * 19)
    assert not is_valid_magic_token("abc'\"<>" * 5)


def test_escape_for_html():
    assert escape_for_html("<b>'x'</b>") == "&lt;b&gt;&#x27;x&#x27;&lt;/b&gt;"


def test_sanitize_input():
    assert sanitize_input("  hi  ") == "hi"
    assert len(sanitize_input("x" * 5000)) == 4000


def test_redact_phone():
    assert redact_phone("+14155551234") == "***1234"
    assert redact_phone("12") == "****"
    assert redact_phone(None) == "****"


def test_split_parts_cleans_markdown():
    parts = split_parts("**Carbone** has a table --- want it?\n\n\n\n---   ")

    assert parts == ["Carbone has a table", "want it?"]


def test_clean_response_keeps_plain_text():
    assert clean_response("dinner at 7?") == "dinner at 7?"


def test_flatten_for_history():
    assert flatten_for_history("first --- second") == "first second"


@pytest.mark.parametrize("value, expected", [
    ("19:30", 1170),
    ("2025-01-15 19:30:00", 1170),
    ("00:00", 0),
    ("25:00", None),
    ("soon", None),
])
def test_time_to_minutes(value, expected):
    assert time_to_minutes(value) == expected
