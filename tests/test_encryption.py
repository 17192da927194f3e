import base64

import pytest

from app.core.exceptions import CredentialDecryptionError
from app.services.encryption import decrypt, encrypt, is_plain_blob

from conftest import TEST_ENCRYPTION_KEY

OTHER_KEY = "ff" * 32
PAYLOAD = {"resy_auth_token": "eyJ.secret.token"}


def test_encrypt_then_decrypt():
    blob = encrypt(PAYLOAD, TEST_ENCRYPTION_KEY)

    assert "secret" not in blob
    assert decrypt(blob, TEST_ENCRYPTION_KEY) == PAYLOAD


def test_blob_format_is_iv_tag_ciphertext():
    iv, tag, ciphertext = (base64.b64decode(piece) for piece in encrypt(PAYLOAD, TEST_ENCRYPTION_KEY).split(":"))

    assert len(iv) == 16
    assert len(tag) == 16
    assert len(ciphertext) > 0


def test_each_encryption_uses_a_fresh_iv():
    assert encrypt(PAYLOAD, TEST_ENCRYPTION_KEY) != encrypt(PAYLOAD, TEST_ENCRYPTION_KEY)


def test_tampered_ciphertext_is_rejected():
    iv, tag, ciphertext = encrypt(PAYLOAD, TEST_ENCRYPTION_KEY).split(":")
    raw = bytearray(base64.b64decode(ciphertext))
    raw[0] ^= 0x01
    tampered = ":".join([iv, tag, base64.b64encode(bytes(raw)).decode()])

    with pytest.raises(CredentialDecryptionError):
        decrypt(tampered, TEST_ENCRYPTION_KEY)


def test_wrong_key_is_rejected():
    blob = encrypt(PAYLOAD, TEST_ENCRYPTION_KEY)

    with pytest.raises(CredentialDecryptionError):
        decrypt(blob, OTHER_KEY)


@pytest.mark.parametrize("blob", ["", "abc", "a:b", "!!:!!:!!", "AAAA:AAAA:AAAA"])
def test_malformed_blobs_are_rejected(blob):
    with pytest.raises(CredentialDecryptionError):
        decrypt(blob, TEST_ENCRYPTION_KEY)


def test_plain_encoding_without_key(monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "CREDENTIAL_ENCRYPTION_KEY", None)
    blob = encrypt(PAYLOAD)

    assert is_plain_blob(blob)
    assert decrypt(blob) == PAYLOAD


def test_ciphertext_without_key_fails_closed(monkeypatch):
    from app.core.config import settings

    blob = encrypt(PAYLOAD, TEST_ENCRYPTION_KEY)
    monkeypatch.setattr(settings, "CREDENTIAL_ENCRYPTION_KEY", None)

    with pytest.raises(CredentialDecryptionError):
        decrypt(blob)


def test_short_key_is_rejected():
    with pytest.raises(CredentialDecryptionError):
        encrypt(PAYLOAD, "abcd")
