"""Fernet encryption for storage provider tokens kept in the credential table."""

from __future__ import annotations

import base64
import functools
import hashlib

from cryptography.fernet import Fernet, InvalidToken


@functools.lru_cache(maxsize=8)
def _fernet(secret_key: str) -> Fernet:
    """Fernet instance keyed by SHA-256 of the application secret."""
    digest = hashlib.sha256(secret_key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_value(plaintext: str, secret_key: str) -> str:
    """Encrypt a token and return URL-safe ciphertext."""
    return _fernet(secret_key).encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str, secret_key: str) -> str:
    """Decrypt a token. Raises ValueError when the ciphertext was not made with this key."""
    try:
        return _fernet(secret_key).decrypt(ciphertext.encode()).decode()
    except InvalidToken as exc:
        raise ValueError("Failed to decrypt stored storage credential") from exc


def encrypt_optional(plaintext: str | None, secret_key: str) -> str | None:
    return encrypt_value(plaintext, secret_key) if plaintext else None


def decrypt_optional(ciphertext: str | None, secret_key: str) -> str | None:
    return decrypt_value(ciphertext, secret_key) if ciphertext else None
