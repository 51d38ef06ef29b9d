"""Credential Vault port for stored passwords."""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol


class CredentialVault(Protocol):
    """Protocol for symmetric encryption of stored credentials.

    Protects the persisted file against casual inspection only.
    """

    @abstractmethod
    def encrypt(self, plaintext: str) -> str:
        """Encrypt a credential.

        Args:
            plaintext: Credential to encrypt.

        Returns:
            Encoded ciphertext.

        Raises:
            CryptoError: If encryption fails.
        """
        ...

    @abstractmethod
    def decrypt(self, token: str) -> str:
        """Decrypt a credential produced by encrypt().

        Args:
            token: Encoded ciphertext.

        Returns:
            Plaintext credential.

        Raises:
            CryptoError: If the token is malformed or the key does not match.
        """
        ...
