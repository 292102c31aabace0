"""Fernet encryption for integration credentials stored at rest (HighLevel OAuth tokens)."""

from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from portal.core.config import settings


class TokenDecryptionError(ValueError):
    """Stored ciphertext does not decrypt under FERNET_KEY."""


@lru_cache
def _fernet_for(key: str) -> Fernet:
    return Fernet(key.encode())


def get_fernet() -> Fernet:
    if not settings.FERNET_KEY:
        raise RuntimeError(
            "FERNET_KEY is not set; generate one with "
            "cryptography.fernet.Fernet.generate_key()"
        )
    return _fernet_for(settings.FERNET_KEY)


def encrypt_token(token: str) -> str:
    """Empty values are stored as empty strings, not ciphertext."""
    return get_fernet().encrypt(token.encode()).decode() if token else ""


def decrypt_token(ciphertext: str) -> str:
    if not ciphertext:
        return ""
    try:
        return get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken as exc:
        raise TokenDecryptionError("Stored token could not be decrypted") from exc
