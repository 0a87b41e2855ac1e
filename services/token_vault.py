"""
Token encryption using AES-256-GCM.

Output format: base64(nonce (12 bytes) + auth tag (16 bytes) + ciphertext),
so one text column holds everything needed to decrypt.
"""
import base64
import binascii
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from services.integrations.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32


class TokenVault:
    """Encrypts OAuth tokens before they are persisted"""

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(
                f"Invalid encryption key length: expected {KEY_LENGTH} bytes, got {len(key)} bytes"
            )
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_hex(cls, hex_key: Optional[str]) -> "TokenVault":
        """Build from the ENCRYPTION_KEY setting (64 hex characters)"""
        if not hex_key:
            raise ConfigurationError("ENCRYPTION_KEY is not set")
        try:
            key = bytes.fromhex(hex_key.strip())
        except ValueError:
            raise ConfigurationError("ENCRYPTION_KEY must be 64 hex characters")
        return cls(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag; store it ahead of the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """
        Raises:
            DecryptionError: bad encoding, truncated blob, wrong key or tampered data
        """
        try:
            data = base64.b64decode(blob.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeError, AttributeError):
            logger.error("Token decryption failed: invalid encoding")
            raise DecryptionError("Failed to decrypt token")

        if len(data) < NONCE_LENGTH + TAG_LENGTH:
            logger.error("Token decryption failed: ciphertext too short")
            raise DecryptionError("Failed to decrypt token")

        nonce = data[:NONCE_LENGTH]
        tag = data[NONCE_LENGTH:NONCE_LENGTH + TAG_LENGTH]
        ciphertext = data[NONCE_LENGTH + TAG_LENGTH:]

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError):
            logger.error("Token decryption failed: authentication tag mismatch")
            raise DecryptionError("Failed to decrypt token")
