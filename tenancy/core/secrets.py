# Copyright (c) 2026 Tenancy Contributors. All Rights Reserved.

"""
Credential Cipher — Fernet encryption for tenant passwords at rest.
"""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger("tenancy.secrets")


def generate_password() -> str:
    """256 bits from the OS CSPRNG, URL-safe alphabet."""
    return secrets.token_urlsafe(32)


class CredentialCipher:
    """
    Encrypts and decrypts stored tenant passwords.

    Without a key the cipher is a pass-through and says so once; that mode
    exists for local development against a throwaway server.
    """

    def __init__(self, key: Optional[str] = None) -> None:
        self._fernet = Fernet(key.encode()) if key else None
        if self._fernet is None:
            logger.warning(
                "CREDENTIAL_ENCRYPTION_KEY is not set; tenant passwords are stored in plaintext"
            )

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: str) -> str:
        if self._fernet is None:
            return plaintext
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: str) -> str:
        if self._fernet is None:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            raise ValueError("Decryption failed. Invalid key or corrupted data.") from e
