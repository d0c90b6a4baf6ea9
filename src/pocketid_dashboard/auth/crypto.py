"""Symmetric encryption of token sets at rest.

The key is derived from the session secret, so rotating the secret makes
every stored envelope undecryptable. Both directions fail open: on a
cryptographic error the input is returned unchanged and the caller decides
whether the result is usable.
"""

import hashlib
import json
import logging
import secrets
from typing import Any

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # AES-256
IV_LENGTH = 16


def derive_key(secret: str) -> bytes:
    """Derive a deterministic AES-256 key from the session secret."""
    return hashlib.sha256(secret.encode("utf-8")).digest()[:KEY_LENGTH]


def is_encrypted(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and bool(data.get("encrypted"))
        and bool(data.get("iv"))
        and bool(data.get("data"))
    )


class TokenCipher:
    """AES-256-CBC cipher for small JSON documents."""

    def __init__(self, secret: str):
        self._key = derive_key(secret)

    def encrypt(self, data: Any) -> Any:
        """Encrypt ``data`` into ``{"encrypted": True, "iv": ..., "data": ...}``."""
        try:
            plaintext = json.dumps(data).encode("utf-8")
            iv = secrets.token_bytes(IV_LENGTH)

            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext) + padder.finalize()

            encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (TypeError, ValueError) as e:
            logger.error(f"Session encryption error: {e}")
            return data

        return {"encrypted": True, "iv": iv.hex(), "data": ciphertext.hex()}

    def decrypt(self, data: Any) -> Any:
        """Decrypt an envelope; anything that is not an envelope passes through."""
        if not is_encrypted(data):
            return data

        try:
            iv = bytes.fromhex(data["iv"])
            ciphertext = bytes.fromhex(data["data"])

            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return json.loads(plaintext.decode("utf-8"))
        except (TypeError, ValueError) as e:
            logger.error(f"Session decryption error: {e}")
            return data
