"""Symmetric encryption for tenant credentials stored at rest."""

from __future__ import annotations

import base64
import binascii
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import ConfigurationError

_IV_LENGTH = 12
_TAG_LENGTH = 16


class CredentialCipher:
    """AES-256-GCM cipher producing base64 JSON envelopes ``{iv, value, tag}``."""

    def __init__(self, encoded_key: str | None) -> None:
        if not encoded_key:
            raise ConfigurationError("SECURITY_ENCRYPTION_KEY is not configured")
        try:
            key = base64.b64decode(encoded_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError(
                "SECURITY_ENCRYPTION_KEY must be a base64 encoded 32-byte value"
            ) from exc
        if len(key) != 32:
            raise ConfigurationError(
                "SECURITY_ENCRYPTION_KEY must be a base64 encoded 32-byte value"
            )
        self._aead = AESGCM(key)

    @staticmethod
    def generate_key() -> str:
        return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")

    def encrypt(self, plain_text: str) -> str:
        iv = os.urandom(_IV_LENGTH)
        sealed = self._aead.encrypt(iv, plain_text.encode("utf-8"), None)
        envelope = {
            "iv": base64.b64encode(iv).decode("ascii"),
            "value": base64.b64encode(sealed[:-_TAG_LENGTH]).decode("ascii"),
            "tag": base64.b64encode(sealed[-_TAG_LENGTH:]).decode("ascii"),
        }
        return base64.b64encode(json.dumps(envelope).encode("utf-8")).decode("ascii")

    def decrypt(self, cipher_text: str) -> str:
        try:
            envelope = json.loads(base64.b64decode(cipher_text).decode("utf-8"))
            iv = base64.b64decode(envelope["iv"])
            value = base64.b64decode(envelope["value"])
            tag = base64.b64decode(envelope["tag"])
        except (binascii.Error, ValueError, KeyError, TypeError) as exc:
            raise ValueError("malformed encrypted credential") from exc
        try:
            plain = self._aead.decrypt(iv, value + tag, None)
        except InvalidTag as exc:
            raise ValueError("encrypted credential failed authentication") from exc
        return plain.decode("utf-8")


def load_cipher(encoded_key: str | None) -> CredentialCipher | None:
    """Return a cipher for ``encoded_key``, or ``None`` when no key is configured."""

    if not encoded_key:
        return None
    return CredentialCipher(encoded_key)
