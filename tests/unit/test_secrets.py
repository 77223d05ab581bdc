# tests/unit/test_secrets.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest
from keyring.errors import KeyringError, PasswordDeleteError

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

import switchyard.secrets.vaults as vaults  # type: ignore
from switchyard.core.errors import (  # type: ignore
    CredentialStoreError,
    InvalidConfiguration,
    InvalidCredentialFormat,
    PartialFailure,
    UnsupportedOperation,
)
from switchyard.secrets.keys import (  # type: ignore
    ApiKeyStore,
    KeyFormat,
    credential_key,
    key_formats_from_config,
)
from switchyard.secrets.vaults import EnvVault, KeyringVault, MemoryVault, build_vault  # type: ignore

KINDS = ["openai", "anthropic", "google_gemini"]


class FlakyVault(MemoryVault):
    def __init__(self, initial, failing):
        super().__init__(initial)
        self.failing = set(failing)

    def delete(self, key: str) -> None:
        if key in self.failing:
            raise CredentialStoreError(f"cannot delete {key}")
        super().delete(key)


# ----- key store -----

def test_credential_key_naming():
    assert credential_key("openai") == "openai_api_key"


def test_store_validates_then_writes():
    vault = MemoryVault()
    store = ApiKeyStore(vault, KINDS)
    store.store("openai", "  sk-abcdefghijklmnopqrstuvwxyz  ")
    assert vault.get("openai_api_key") == "sk-abcdefghijklmnopqrstuvwxyz"
    assert store.exists("openai")
    assert store.retrieve("openai") == "sk-abcdefghijklmnopqrstuvwxyz"


@pytest.mark.parametrize(
    "kind, secret",
    [
        ("openai", ""),
        ("openai", "   "),
        ("openai", "pk-abcdefghijklmnopqrstuvwxyz"),   # wrong prefix
        ("openai", "sk-short"),                         # too short
        ("anthropic", "sk-abcdefghijklmnopqrstuvwxyz0123456"),
        ("google_gemini", "AIza key with spaces 0123456789"),
    ],
)
def test_bad_formats_rejected_before_vault(kind, secret):
    vault = MemoryVault()
    store = ApiKeyStore(vault, KINDS)
    with pytest.raises(InvalidCredentialFormat):
        store.store(kind, secret)
    assert not vault.exists(credential_key(kind))


def test_invalid_format_is_a_configuration_error():
    assert issubclass(InvalidCredentialFormat, InvalidConfiguration)


def test_unknown_kind_rejected():
    store = ApiKeyStore(MemoryVault(), KINDS)
    with pytest.raises(InvalidCredentialFormat):
        store.store("mistral", "sk-abcdefghijklmnopqrstuvwxyz")


def test_key_formats_overridable_from_config():
    formats = key_formats_from_config({"openai": {"prefix": "org-", "min_length": 8}})
    store = ApiKeyStore(MemoryVault(), KINDS, formats)
    store.store("openai", "org-12345")
    # other kinds keep their defaults
    assert formats["anthropic"] == KeyFormat(min_length=30, prefix="sk-ant-")


def test_list_with_credentials():
    vault = MemoryVault({"openai_api_key": "a", "anthropic_api_key": "b", "other_api_key": "c"})
    store = ApiKeyStore(vault, KINDS)
    assert store.list_with_credentials() == {"openai", "anthropic"}


def test_clear_all_removes_everything():
    vault = MemoryVault({"openai_api_key": "a", "anthropic_api_key": "b"})
    store = ApiKeyStore(vault, KINDS)
    assert store.clear_all() == KINDS
    assert store.list_with_credentials() == set()


def test_clear_all_reports_partial_failure():
    vault = FlakyVault({"openai_api_key": "a", "anthropic_api_key": "b"}, failing=["anthropic_api_key"])
    store = ApiKeyStore(vault, KINDS)
    with pytest.raises(PartialFailure) as ei:
        store.clear_all()
    assert len(ei.value.errors) == 1
    assert ei.value.succeeded == ["openai", "google_gemini"]
    # the failure did not stop the remaining deletes
    assert not vault.exists("openai_api_key")
    assert vault.exists("anthropic_api_key")


# ----- vaults -----

def test_env_vault_reads_upper_case_variables(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", " sk-from-env ")
    vault = EnvVault()
    assert vault.get("openai_api_key") == "sk-from-env"
    assert vault.exists("openai_api_key")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    assert vault.get("anthropic_api_key") is None


def test_env_vault_is_read_only():
    vault = EnvVault()
    with pytest.raises(UnsupportedOperation):
        vault.set("openai_api_key", "x")
    with pytest.raises(UnsupportedOperation):
        vault.delete("openai_api_key")


class FakeKeyring:
    def __init__(self):
        self.items = {}
        self.broken = False

    def get_password(self, service, key):
        if self.broken:
            raise KeyringError("locked")
        return self.items.get((service, key))

    def set_password(self, service, key, secret):
        if self.broken:
            raise KeyringError("locked")
        self.items[(service, key)] = secret

    def delete_password(self, service, key):
        if (service, key) not in self.items:
            raise PasswordDeleteError("not found")
        del self.items[(service, key)]


@pytest.fixture
def fake_keyring(monkeypatch):
    fk = FakeKeyring()
    monkeypatch.setattr(vaults.keyring, "get_password", fk.get_password)
    monkeypatch.setattr(vaults.keyring, "set_password", fk.set_password)
    monkeypatch.setattr(vaults.keyring, "delete_password", fk.delete_password)
    return fk


def test_keyring_vault_round_trip(fake_keyring):
    vault = KeyringVault("svc")
    vault.set("openai_api_key", "sk-123")
    assert fake_keyring.items == {("svc", "openai_api_key"): "sk-123"}
    assert vault.get("openai_api_key") == "sk-123"
    vault.delete("openai_api_key")
    assert not vault.exists("openai_api_key")
    # deleting an absent key is fine
    vault.delete("openai_api_key")


def test_keyring_backend_errors_are_wrapped(fake_keyring):
    fake_keyring.broken = True
    vault = KeyringVault("svc")
    with pytest.raises(CredentialStoreError):
        vault.get("openai_api_key")
    with pytest.raises(CredentialStoreError):
        vault.set("openai_api_key", "x")


def test_build_vault():
    assert isinstance(build_vault("memory"), MemoryVault)
    assert isinstance(build_vault("ENV"), EnvVault)
    kv = build_vault("keyring", service="custom")
    assert isinstance(kv, KeyringVault) and kv.service == "custom"
    with pytest.raises(ValueError):
        build_vault("plaintext")
