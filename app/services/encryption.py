"""
app/services/encryption.py

Purpose: Credential encryption at rest

- AES-256-GCM with a random 16-byte IV per blob
- Stored format: base64(iv):base64(tag):base64(ciphertext)
- Without CREDENTIAL_ENCRYPTION_KEY, blobs are written as
  "plain:" + base64(json) so they can never pass for real ciphertext
- decrypt() fails closed: any tampering, wrong key or malformed blob
  raises CredentialDecryptionError
"""

import base64
import binascii
import json
import os
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.config import settings
from app.core.exceptions import CredentialDecryptionError
from app.core.logging import get_logger

logger = get_logger(__name__)

PLAIN_PREFIX = "plain:"
IV_LENGTH = 16
TAG_LENGTH = 16

_warned_plain = False


def _resolve_key(key_hex: Optional[str]) -> Optional[bytes]:
    key_hex = key_hex if key_hex is not None else settings.CREDENTIAL_ENCRYPTION_KEY
    if not key_hex:
        return None
    try:
        key = bytes.fromhex(key_hex)
    except ValueError as e:
        raise CredentialDecryptionError("Encryption key is not valid hex") from e
    if len(key) != 32:
        raise CredentialDecryptionError("Encryption key must be 32 bytes")
    return key


def is_plain_blob(blob: str) -> bool:
    return blob.startswith(PLAIN_PREFIX)


def encrypt(data: Dict[str, Any], key_hex: Optional[str] = None) -> str:
    """
    Encrypts a JSON-serializable dict.

    Args:
        data: Payload to protect
        key_hex: 64 hex chars; defaults to CREDENTIAL_ENCRYPTION_KEY

    Returns:
        Opaque string safe to store
    """
    global _warned_plain

    payload = json.dumps(data, separators=(",", ":")).encode("utf-8")
    key = _resolve_key(key_hex)

    if key is None:
        if not _warned_plain:
            logger.warning("⚠️ CREDENTIAL_ENCRYPTION_KEY not set, storing credentials with plain encoding")
            _warned_plain = True
        return PLAIN_PREFIX + base64.b64encode(payload).decode("ascii")

    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, payload, None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return ":".join(base64.b64encode(part).decode("ascii") for part in (iv, tag, ciphertext))


def decrypt(blob: str, key_hex: Optional[str] = None) -> Dict[str, Any]:
    """
    Reverses encrypt().

    Raises:
        CredentialDecryptionError: tampered blob, wrong key, or missing key
    """
    if is_plain_blob(blob):
        try:
            return json.loads(base64.b64decode(blob[len(PLAIN_PREFIX):], validate=True))
        except (binascii.Error, ValueError) as e:
            raise CredentialDecryptionError("Malformed plain credential blob") from e

    key = _resolve_key(key_hex)
    if key is None:
        raise CredentialDecryptionError("Encrypted credentials found but no encryption key is configured")

    pieces = blob.split(":")
    if len(pieces) != 3:
        raise CredentialDecryptionError("Malformed credential blob")

    try:
        iv, tag, ciphertext = (base64.b64decode(piece, validate=True) for piece in pieces)
    except (binascii.Error, ValueError) as e:
        raise CredentialDecryptionError("Malformed credential blob") from e

    if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
        raise CredentialDecryptionError("Malformed credential blob")

    try:
        payload = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise CredentialDecryptionError("Credential blob failed authentication") from e

    try:
        return json.loads(payload)
    except ValueError as e:
        raise CredentialDecryptionError("Decrypted credentials are not valid JSON") from e
