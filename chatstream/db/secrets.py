"""Encryption of provider API keys at rest.

Uses Fernet symmetric encryption. The key is derived from the SECRETS_KEY
environment variable.
"""

import base64
import hashlib
import os
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken


class SecretsError(Exception):
    """A stored secret could not be decrypted."""

    pass


def _fernet_for(key_material: str) -> Fernet:
    """Derive a valid Fernet key (32 bytes, base64-encoded) from any string."""
    key_hash = hashlib.sha256(key_material.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(key_hash))


@lru_cache(maxsize=1)
def _get_fernet() -> Fernet:
    """Get the Fernet cipher for the configured key.

    Without SECRETS_KEY a deterministic key based on DATABASE_PATH is used.
    That fallback is for development only.
    """
    key_material = os.environ.get("SECRETS_KEY")
    if not key_material:
        db_path = os.environ.get("DATABASE_PATH", "./data/chat.db")
        key_material = f"dev-secrets-key-{db_path}"
    return _fernet_for(key_material)


def reset_cipher() -> None:
    """Forget the cached cipher so the next call re-reads the environment."""
    _get_fernet.cache_clear()


def encrypt_secret(value: str) -> str:
    """Encrypt a secret value.

    Returns:
        The Fernet token as text.
    """
    return _get_fernet().encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_secret(encrypted_value: str) -> str:
    """Decrypt a secret value.

    Raises:
        SecretsError: If the token is invalid or was encrypted with another key.
    """
    try:
        decrypted = _get_fernet().decrypt(encrypted_value.encode("utf-8"))
    except InvalidToken as e:
        raise SecretsError("Failed to decrypt secret: invalid token or wrong SECRETS_KEY") from e
    return decrypted.decode("utf-8")


def rotate_encryption_key(
    encrypted_values: list[str],
    old_key_material: str,
    new_key_material: str,
) -> list[str]:
    """Re-encrypt values when SECRETS_KEY changes."""
    old_fernet = _fernet_for(old_key_material)
    new_fernet = _fernet_for(new_key_material)
    return [
        new_fernet.encrypt(old_fernet.decrypt(value.encode("utf-8"))).decode("utf-8")
        for value in encrypted_values
    ]
