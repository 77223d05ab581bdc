# tests/unit/test_registry.py

from __future__ import annotations
import sys
from pathlib import Path
from typing import Dict, List
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from switchyard.core.errors import (  # type: ignore
    AuthenticationFailed,
    InvalidConfiguration,
    UnsupportedOperation,
)
from switchyard.core.models import Completion, Model, ProviderType  # type: ignore
from switchyard.preferences.store import MemoryPreferenceStore  # type: ignore
from switchyard.providers.base import BaseProvider  # type: ignore
from switchyard.providers.factory import ProviderFactory  # type: ignore
from switchyard.providers.registry import ProviderRegistry  # type: ignore
from switchyard.secrets.keys import ApiKeyStore  # type: ignore
from switchyard.secrets.vaults import MemoryVault  # type: ignore

REMOTES = ["openai", "anthropic"]


class FakeProvider(BaseProvider):
    """Provider double whose initialize can be told to fail."""

    def __init__(self, kind: str, registry_log: List[str]):
        super().__init__()
        self.kind = self.provider_id = kind
        self.display_name = kind.title()
        self.provider_type = ProviderType.LOCAL if kind == "local" else ProviderType.EXTERNAL
        self.requires_credential = False
        self.fail_init = False
        self.log = registry_log

    async def validate_configuration(self) -> None:
        self.log.append(f"init:{self.kind}")
        if self.fail_init:
            raise AuthenticationFailed(f"{self.kind} rejected")

    async def _load_models(self):
        return [Model(id=f"{self.kind}-m", name="M", description="", context_window=1, provider=self.kind)]

    async def _complete(self, messages, *, model_id, max_tokens):
        return Completion(text="ok")

    def _stream(self, messages, *, model_id, max_tokens):
        async def gen():
            yield "ok"
        return gen()

    async def cleanup(self) -> None:
        self.log.append(f"cleanup:{self.kind}")
        await super().cleanup()


class Harness:
    def __init__(self, keys=(), preferred=None):
        self.log: List[str] = []
        self.built: Dict[str, List[FakeProvider]] = {}
        self.failing: set = set()
        vault = MemoryVault({f"{k}_api_key": "x" * 40 for k in keys})
        self.key_store = ApiKeyStore(vault, REMOTES)
        self.prefs = MemoryPreferenceStore(preferred)
        self.registry = ProviderRegistry(
            self.build, self.key_store, self.prefs, remote_kinds=REMOTES
        )

    def build(self, kind: str) -> FakeProvider:
        p = FakeProvider(kind, self.log)
        p.fail_init = kind in self.failing
        self.built.setdefault(kind, []).append(p)
        return p


def test_factory_register_and_get(monkeypatch):
    # keep the dummy out of the shared kind table
    monkeypatch.setattr(ProviderFactory, "_classes", dict(ProviderFactory._classes))

    @ProviderFactory.register("Dummy")
    class DummyProvider:
        kind = "dummy"

        def __init__(self, label):
            self.label = label

        @classmethod
        def create(cls, *, label):
            return cls(label)

    # Case-insensitive lookup
    assert ProviderFactory.get("dummy") is DummyProvider
    assert ProviderFactory.get("DUMMY") is DummyProvider
    assert "dummy" in ProviderFactory.kinds()
    assert ProviderFactory.build("dummy", label="x").label == "x"


def test_factory_rejects_classes_without_create_or_with_wrong_kind(monkeypatch):
    monkeypatch.setattr(ProviderFactory, "_classes", dict(ProviderFactory._classes))

    with pytest.raises(TypeError):
        @ProviderFactory.register("bare")
        class Bare:
            pass

    with pytest.raises(TypeError):
        @ProviderFactory.register("other")
        class Mislabelled:
            kind = "openai"

            @classmethod
            def create(cls):
                return cls()

    assert "bare" not in ProviderFactory.kinds()
    assert "other" not in ProviderFactory.kinds()


def test_factory_unknown_raises():
    with pytest.raises(InvalidConfiguration, match="not registered"):
        ProviderFactory.get("does-not-exist")


def test_factory_builtins_register():
    ProviderFactory.ensure_imports()
    for kind in ("local", "openai", "google_gemini", "anthropic"):
        assert ProviderFactory.get(kind).kind == kind


def test_load_builds_local_first_and_only_credentialed_remotes():
    h = Harness(keys=["anthropic"])
    active = h.registry.load()
    assert [p.provider_id for p in h.registry.providers] == ["local", "anthropic"]
    assert active is h.registry.local


def test_load_restores_preferred_provider():
    h = Harness(keys=["openai"], preferred="openai")
    assert h.registry.load().provider_id == "openai"


def test_load_ignores_stale_preference():
    h = Harness(keys=[], preferred="openai")
    assert h.registry.load().provider_id == "local"


@pytest.mark.asyncio
async def test_start_falls_back_to_local_when_remote_fails():
    h = Harness(keys=["openai"], preferred="openai")
    h.failing.add("openai")
    h.registry.load()
    active = await h.registry.start()
    assert active is h.registry.local
    assert active.is_ready()


@pytest.mark.asyncio
async def test_switch_cleans_up_previous_then_initializes_target():
    h = Harness(keys=["openai"])
    h.registry.load()
    await h.registry.start()
    h.log.clear()

    active = await h.registry.switch("openai")
    assert active.provider_id == "openai"
    assert h.registry.active is active and active.is_ready()
    assert h.log == ["cleanup:local", "init:openai"]
    assert h.prefs.selected == "openai"


@pytest.mark.asyncio
async def test_switch_failure_restores_previous_and_propagates():
    h = Harness(keys=["openai", "anthropic"], preferred="openai")
    h.registry.load()
    await h.registry.start()
    h.registry.get("anthropic").fail_init = True

    with pytest.raises(AuthenticationFailed):
        await h.registry.switch("anthropic")

    assert h.registry.active.provider_id == "openai"
    assert h.registry.active.is_ready()
    assert h.prefs.selected == "openai"


@pytest.mark.asyncio
async def test_switch_failure_falls_back_to_local_when_restore_fails():
    h = Harness(keys=["openai", "anthropic"], preferred="openai")
    h.registry.load()
    await h.registry.start()
    h.registry.get("anthropic").fail_init = True
    h.registry.get("openai").fail_init = True

    with pytest.raises(AuthenticationFailed):
        await h.registry.switch("anthropic")
    assert h.registry.active is h.registry.local
    assert h.registry.local.is_ready()


@pytest.mark.asyncio
async def test_switch_unknown_provider():
    h = Harness()
    h.registry.load()
    with pytest.raises(InvalidConfiguration):
        await h.registry.switch("mistral")


@pytest.mark.asyncio
async def test_removing_active_credential_falls_back_to_local():
    h = Harness(keys=["openai"], preferred="openai")
    h.registry.load()
    await h.registry.start()
    openai = h.registry.active

    removed = await h.registry.remove_remote("openai")

    assert removed == [openai]
    assert not openai.is_ready()
    assert h.registry.active is h.registry.local
    assert h.registry.local.is_ready()
    assert [p.provider_id for p in h.registry.providers] == ["local"]
    assert h.prefs.selected == "local"


@pytest.mark.asyncio
async def test_active_slot_never_empty_during_removal():
    h = Harness(keys=["openai"], preferred="openai")
    h.registry.load()
    await h.registry.start()
    observed = []

    openai = h.registry.active
    original_cleanup = openai.cleanup

    async def observing_cleanup():
        observed.append(h.registry.active)
        await original_cleanup()

    openai.cleanup = observing_cleanup
    await h.registry.remove_remote("openai")
    assert observed and all(a is not None and a in h.registry.providers for a in observed)


@pytest.mark.asyncio
async def test_fallback_failure_is_logged_not_raised():
    h = Harness(keys=["openai"], preferred="openai")
    h.registry.load()
    await h.registry.start()
    h.registry.local.fail_init = True

    await h.registry.remove_remote("openai")   # no exception
    assert h.registry.active is h.registry.local
    assert not h.registry.local.is_ready()


@pytest.mark.asyncio
async def test_removing_inactive_remote_keeps_active():
    h = Harness(keys=["openai", "anthropic"])
    h.registry.load()
    await h.registry.start()
    await h.registry.remove_remote("anthropic")
    assert h.registry.active is h.registry.local
    assert h.registry.get("anthropic") is None


@pytest.mark.asyncio
async def test_local_cannot_be_removed():
    h = Harness()
    h.registry.load()
    with pytest.raises(UnsupportedOperation):
        await h.registry.remove_remote("local")


@pytest.mark.asyncio
async def test_add_remote_is_idempotent_and_does_not_activate():
    h = Harness()
    h.registry.load()
    await h.registry.start()

    first = await h.registry.add_remote("openai")
    second = await h.registry.add_remote("openai")

    openais = [p for p in h.registry.providers if p.kind == "openai"]
    assert openais == [second]
    assert first is not second
    assert h.registry.active is h.registry.local


@pytest.mark.asyncio
async def test_update_selected_model_forwards_to_active():
    h = Harness()
    assert h.registry.update_selected_model("x") is None   # nothing loaded
    h.registry.load()
    await h.registry.start()
    model = h.registry.update_selected_model("local-m")
    assert model.id == "local-m"
    assert h.registry.local.selected_model.id == "local-m"


@pytest.mark.asyncio
async def test_close_cleans_up_everything():
    h = Harness(keys=["openai"])
    h.registry.load()
    await h.registry.start()
    await h.registry.close()
    assert all(not p.is_ready() for p in h.registry.providers)
