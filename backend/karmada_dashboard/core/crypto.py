from __future__ import annotations

from typing import Optional

from cryptography.fernet import Fernet, InvalidToken  # type: ignore[import-untyped]

from karmada_dashboard.config import get_settings


_FERNET_PREFIX = "enc:"


def _get_fernet(key: str | None = None) -> Optional[Fernet]:
    key = key or get_settings().fernet_key
    if not key:
        return None
    return Fernet(key.encode())


def encrypt_if_configured(plaintext: str, key: str | None = None) -> str:
    """Encrypt with the configured Fernet key; plaintext passes through when no key is set."""
    f = _get_fernet(key)
    if not f:
        return plaintext
    return _FERNET_PREFIX + f.encrypt(plaintext.encode()).decode()


def decrypt_if_encrypted(value: str, key: str | None = None) -> str:
    if not value.startswith(_FERNET_PREFIX):
        return value
    f = _get_fernet(key)
    if not f:
        raise ValueError("value is encrypted but no fernet key is configured")
    try:
        return f.decrypt(value[len(_FERNET_PREFIX):].encode()).decode()
    except InvalidToken as exc:
        raise ValueError("value could not be decrypted with the configured fernet key") from exc
