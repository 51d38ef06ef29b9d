"""AES implementation of the CredentialVault port.

One symmetric key per installation is derived as SHA-256 of an
install-scoped secret (by default the application's private data path).
Each encryption uses a fresh random 16-byte IV with AES-256-CBC and PKCS7
padding. Tokens are stored as "<iv hex>:<ciphertext hex>".

Every credential shares the same derived key. This defends the persisted
file against casual inspection only; anyone with access to the user
account can derive the key.
"""

from __future__ import annotations

import hashlib
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from db_orchestrator.domain.errors import CryptoError

IV_SIZE = 16
BLOCK_SIZE_BITS = 128


def derive_key(secret: str) -> bytes:
    """Derive a 32-byte key from an install-scoped secret."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


class AesCredentialVault:
    """AES-256-CBC credential vault."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise CryptoError("Vault secret must not be empty")
        self._key = derive_key(secret)

    def encrypt(self, plaintext: str) -> str:
        try:
            iv = os.urandom(IV_SIZE)
            padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
            padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
            encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except (TypeError, ValueError, UnicodeError) as e:
            raise CryptoError(f"Encryption failed: {e}") from e
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        iv_hex, sep, ct_hex = token.partition(":")
        if not sep or not iv_hex or not ct_hex:
            raise CryptoError("Malformed credential token")
        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ct_hex)
            if len(iv) != IV_SIZE:
                raise ValueError(f"IV must be {IV_SIZE} bytes")
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (TypeError, ValueError, UnicodeError) as e:
            raise CryptoError(f"Decryption failed: {e}") from e
