"""
At-rest encryption for OAuth tokens (Fernet).
"""

from cryptography.fernet import Fernet, InvalidToken

from .client import GmailError


class TokenDecryptionError(GmailError):
    """Stored token cannot be decrypted with the configured key."""

    pass


class TokenCipher:
    """Encrypts tokens before they reach the state store."""

    def __init__(self, key: str | bytes):
        if not key:
            raise ValueError("encryption key is required to store OAuth tokens")
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, token: str) -> str:
        return self._fernet.encrypt(token.encode()).decode()

    def decrypt(self, encrypted: str) -> str:
        try:
            return self._fernet.decrypt(encrypted.encode()).decode()
        except InvalidToken as e:
            raise TokenDecryptionError("stored token could not be decrypted (key changed?)") from e
