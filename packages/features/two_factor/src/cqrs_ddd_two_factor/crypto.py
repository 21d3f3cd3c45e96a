"""Encryption of TOTP secrets at the storage boundary.

The manager encrypts right before a record is saved and decrypts right
after it is loaded; domain objects only ever hold plaintext.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import ConfigurationError
from .ports import ISecretCipher

NONCE_LEN = 12
KEY_LEN = 32
_AAD = b"cqrs-ddd-two-factor:secret:v1"


class AesGcmSecretCipher(ISecretCipher):
    """AES-256-GCM cipher producing urlsafe base64 text.

    Layout of the decoded blob: 12-byte random nonce followed by the
    ciphertext and 16-byte tag.

    Example:
        ```python
        cipher = AesGcmSecretCipher.from_base64(os.environ["TWO_FACTOR_KEY"])
        stored = cipher.encrypt("JBSWY3DPEHPK3PXP")
        ```
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LEN:
            raise ConfigurationError("AES-256-GCM requires a 32-byte key")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_base64(cls, key: str) -> AesGcmSecretCipher:
        try:
            raw = base64.urlsafe_b64decode(key.encode())
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError("Secret encryption key is not base64") from e
        return cls(raw)

    @staticmethod
    def generate_key() -> str:
        """Create a new urlsafe base64 key for configuration."""
        return base64.urlsafe_b64encode(AESGCM.generate_key(bit_length=256)).decode()

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LEN)
        ct = self._aesgcm.encrypt(nonce, plaintext.encode(), _AAD)
        return base64.urlsafe_b64encode(nonce + ct).decode()

    def decrypt(self, ciphertext: str) -> str:
        try:
            blob = base64.urlsafe_b64decode(ciphertext.encode())
        except (binascii.Error, ValueError) as e:
            raise ConfigurationError("Stored secret is not valid ciphertext") from e
        if len(blob) < NONCE_LEN + 16:
            raise ConfigurationError("Stored secret is not valid ciphertext")
        try:
            plaintext = self._aesgcm.decrypt(blob[:NONCE_LEN], blob[NONCE_LEN:], _AAD)
        except InvalidTag as e:
            raise ConfigurationError(
                "Stored secret could not be decrypted with the configured key"
            ) from e
        return plaintext.decode()


class PlaintextSecretCipher(ISecretCipher):
    """Identity cipher used when ``encrypt_secrets`` is off."""

    def encrypt(self, plaintext: str) -> str:
        return plaintext

    def decrypt(self, ciphertext: str) -> str:
        return ciphertext


__all__: list[str] = ["AesGcmSecretCipher", "PlaintextSecretCipher"]
