"""Symmetric encryption of secrets at rest"""

import base64
import binascii
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ... import config
from ...errors import ConfigurationError, SecretDecryptionError

logger = logging.getLogger(__name__)


def get_fernet_key(raw_key: str) -> bytes:
    """Use the value as-is when it already is a Fernet key, otherwise stretch it with SHA-256"""
    try:
        if len(base64.urlsafe_b64decode(raw_key.encode())) == 32:
            return raw_key.encode()
    except (binascii.Error, ValueError):
        pass
    key = hashlib.sha256(raw_key.encode()).digest()
    return base64.urlsafe_b64encode(key)


class KeyProvider:
    """Supplies the encryption key. Subclass to read it from somewhere else."""

    def get_key(self) -> str:
        raise NotImplementedError


class EnvKeyProvider(KeyProvider):
    def get_key(self) -> str:
        if not config.DB_ENCRYPTION_KEY:
            raise ConfigurationError("DB_ENCRYPTION_KEY is not configured")
        return config.DB_ENCRYPTION_KEY


class StaticKeyProvider(KeyProvider):
    def __init__(self, key: str):
        self._key = key

    def get_key(self) -> str:
        if not self._key:
            raise ConfigurationError("Encryption key is empty")
        return self._key


class CredentialVault:
    """Encrypts and decrypts credential strings with Fernet"""

    def __init__(self, key_provider: Optional[KeyProvider] = None):
        self.key_provider = key_provider or EnvKeyProvider()
        self._cipher: Optional[Fernet] = None

    @property
    def cipher(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(get_fernet_key(self.key_provider.get_key()))
        return self._cipher

    def encrypt_secret(self, plaintext: str) -> str:
        if plaintext is None:
            raise ValueError("Cannot encrypt None")
        return self.cipher.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt_secret(self, ciphertext: str) -> str:
        if not ciphertext:
            raise SecretDecryptionError("No ciphertext to decrypt")
        try:
            return self.cipher.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError) as e:
            logger.error(f"❌ Secret decryption failed: {type(e).__name__}")
            raise SecretDecryptionError() from e

    def decrypt_or_none(self, ciphertext: Optional[str]) -> Optional[str]:
        """Decrypt when present. Failures are logged and yield None."""
        if not ciphertext:
            return None
        try:
            return self.decrypt_secret(ciphertext)
        except SecretDecryptionError:
            return None
