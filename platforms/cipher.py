"""
Token Cipher

Application-level encryption for OAuth tokens at rest, using AES-256-GCM.
An encrypted value is three base64 segments joined by ":" -
nonce:ciphertext:tag.
"""

import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from config import settings
from utils.exceptions import ConfigurationError, DecryptionError
from utils.logger import get_logger

logger = get_logger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12  # GCM recommended nonce length
TAG_LENGTH = 16
SEGMENT_SEPARATOR = ":"


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(segment: str) -> bytes:
    return base64.b64decode(segment.encode("ascii"), validate=True)


def load_encryption_key(hex_key: Optional[str] = None, app_env: Optional[str] = None) -> bytes:
    """
    Resolve the 32-byte token encryption key.

    Args:
        hex_key: 64 hex characters; defaults to settings.OAUTH_ENCRYPTION_KEY.
        app_env: Environment name; defaults to settings.APP_ENV.

    Returns:
        bytes: The raw key.

    Raises:
        ConfigurationError: If the key is missing outside development, or malformed.
    """
    hex_key = settings.OAUTH_ENCRYPTION_KEY if hex_key is None else hex_key
    app_env = settings.APP_ENV if app_env is None else app_env

    if not hex_key:
        if app_env == "development":
            logger.warning("OAUTH_ENCRYPTION_KEY not set - using development key. DO NOT USE IN PRODUCTION!")
            kdf = Scrypt(salt=b"salt", length=KEY_LENGTH, n=2**14, r=8, p=1)
            return kdf.derive(b"dev-only-key")
        raise ConfigurationError("OAUTH_ENCRYPTION_KEY environment variable is required for token encryption")

    if len(hex_key) != KEY_LENGTH * 2:
        raise ConfigurationError(
            "OAUTH_ENCRYPTION_KEY must be 64 hex characters (32 bytes). Generate with: openssl rand -hex 32"
        )

    try:
        return bytes.fromhex(hex_key)
    except ValueError:
        raise ConfigurationError("OAUTH_ENCRYPTION_KEY must be hex encoded") from None


class TokenCipher:
    """Authenticated symmetric encryption for stored tokens."""

    def __init__(self, key: bytes):
        """
        Initialize the cipher.

        Args:
            key: 32 raw key bytes.

        Raises:
            ConfigurationError: If the key has the wrong length.
        """
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(f"Encryption key must be {KEY_LENGTH} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_settings(cls) -> "TokenCipher":
        """Build a cipher from OAUTH_ENCRYPTION_KEY / APP_ENV."""
        return cls(load_encryption_key())

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string value.

        Args:
            plaintext: Any string, including the empty string.

        Returns:
            str: "nonce:ciphertext:tag", each segment base64 encoded.
        """
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return SEGMENT_SEPARATOR.join([_b64encode(nonce), _b64encode(ciphertext), _b64encode(tag)])

    def decrypt(self, token: str) -> str:
        """
        Decrypt a value produced by encrypt().

        Args:
            token: "nonce:ciphertext:tag".

        Returns:
            str: The plaintext.

        Raises:
            DecryptionError: If the value is malformed, tampered with or was
                encrypted under another key.
        """
        parts = token.split(SEGMENT_SEPARATOR)
        if len(parts) != 3:
            raise DecryptionError("Invalid encrypted format")

        try:
            nonce, ciphertext, tag = (_b64decode(part) for part in parts)
        except (binascii.Error, ValueError):
            raise DecryptionError("Invalid base64 in encrypted value") from None

        if len(nonce) != NONCE_LENGTH:
            raise DecryptionError("Invalid nonce length")
        if len(tag) != TAG_LENGTH:
            raise DecryptionError("Invalid auth tag length")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise DecryptionError("Encrypted value failed authentication") from None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionError("Decrypted value is not valid UTF-8") from None

    @staticmethod
    def is_encrypted(value) -> bool:
        """
        Check if a value appears to be encrypted (has the expected format).

        Never raises; used to tell legacy plaintext rows from encrypted ones.
        """
        if not isinstance(value, str):
            return False
        parts = value.split(SEGMENT_SEPARATOR)
        if len(parts) != 3:
            return False
        try:
            return len(_b64decode(parts[0])) == NONCE_LENGTH and len(_b64decode(parts[2])) == TAG_LENGTH
        except (binascii.Error, ValueError):
            return False
