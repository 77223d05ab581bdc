# src/switchyard/secrets/vaults.py

from __future__ import annotations
from typing import Dict, Optional
import os

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from switchyard.core.errors import CredentialStoreError, UnsupportedOperation
from switchyard.core.ports import CredentialVault

DEFAULT_SERVICE = "switchyard.providers"


class KeyringVault:
    """System keyring (macOS Keychain, Secret Service, Windows Credential Locker)."""

    def __init__(self, service: str = DEFAULT_SERVICE):
        self.service = service

    def get(self, key: str) -> Optional[str]:
        try:
            val = keyring.get_password(self.service, key)
        except KeyringError as e:
            raise CredentialStoreError(f"Keyring read failed for '{key}': {e}") from e
        return val.strip() if val else None

    def set(self, key: str, secret: str) -> None:
        try:
            keyring.set_password(self.service, key, secret)
        except KeyringError as e:
            raise CredentialStoreError(f"Keyring write failed for '{key}': {e}") from e

    def delete(self, key: str) -> None:
        try:
            keyring.delete_password(self.service, key)
        except PasswordDeleteError:
            # already absent
            return
        except KeyringError as e:
            raise CredentialStoreError(f"Keyring delete failed for '{key}': {e}") from e

    def exists(self, key: str) -> bool:
        return self.get(key) is not None


class EnvVault:
    """
    Read-only: '{kind}_api_key' resolves to the upper-cased env var
    (OPENAI_API_KEY, ANTHROPIC_API_KEY, GOOGLE_GEMINI_API_KEY).
    """

    def get(self, key: str) -> Optional[str]:
        for name in (key.upper(), key):
            val = os.getenv(name)
            if val and val.strip():
                return val.strip()
        return None

    def set(self, key: str, secret: str) -> None:
        raise UnsupportedOperation(f"env vault is read-only (set {key.upper()} instead)")

    def delete(self, key: str) -> None:
        raise UnsupportedOperation(f"env vault is read-only (unset {key.upper()} instead)")

    def exists(self, key: str) -> bool:
        return self.get(key) is not None


class MemoryVault:
    """Process-local store; nothing survives the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set(self, key: str, secret: str) -> None:
        self._items[key] = secret

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def exists(self, key: str) -> bool:
        return key in self._items


_ALLOWED_METHODS = {"keyring", "env", "memory"}


def build_vault(method: str, *, service: str = DEFAULT_SERVICE) -> CredentialVault:
    key = str(method).strip().lower()
    if key not in _ALLOWED_METHODS:
        raise ValueError(f"Unknown secrets method '{method}'. Allowed: {sorted(_ALLOWED_METHODS)}")
    if key == "keyring":
        return KeyringVault(service)
    if key == "env":
        return EnvVault()
    return MemoryVault()
