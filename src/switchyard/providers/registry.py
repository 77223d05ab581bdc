"""Owner of every provider instance and the single active selection.

The local provider is always registered, so the active slot is never empty
once load() has run. Mutations (switch, add, remove) are serialized by one
asyncio.Lock.
"""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional, Sequence, Union

from switchyard.core.errors import InvalidConfiguration, UnsupportedOperation
from switchyard.core.models import Model
from switchyard.core.ports import PreferenceStore
from switchyard.logging_setup import get_logger
from switchyard.providers.base import BaseProvider
from switchyard.secrets.keys import ApiKeyStore

logger = get_logger(__name__)

LOCAL_KIND = "local"

BuildProvider = Callable[[str], BaseProvider]


class ProviderRegistry:
    def __init__(
        self,
        build_provider: BuildProvider,
        key_store: ApiKeyStore,
        preferences: PreferenceStore,
        *,
        remote_kinds: Sequence[str],
        local_kind: str = LOCAL_KIND,
    ):
        self._build = build_provider
        self.key_store = key_store
        self.preferences = preferences
        self.remote_kinds = [k for k in remote_kinds if k != local_kind]
        self.local_kind = local_kind

        self._providers: List[BaseProvider] = []
        self._active: Optional[BaseProvider] = None
        self._lock = asyncio.Lock()

    # ----- queries -----

    @property
    def providers(self) -> List[BaseProvider]:
        return list(self._providers)

    @property
    def active(self) -> Optional[BaseProvider]:
        return self._active

    @property
    def local(self) -> BaseProvider:
        for p in self._providers:
            if p.kind == self.local_kind:
                return p
        raise InvalidConfiguration("Provider registry is not loaded")

    def get(self, provider_id: str) -> Optional[BaseProvider]:
        return next((p for p in self._providers if p.provider_id == provider_id), None)

    # ----- loading -----

    def load(self) -> BaseProvider:
        """
        Build local first, then every remote kind that has a stored key.
        The remembered provider becomes active if it is still registered.
        """
        self._providers = [self._build(self.local_kind)]
        for kind in self.remote_kinds:
            if self.key_store.exists(kind):
                self._providers.append(self._build(kind))

        preferred = self.preferences.load_selected_provider_id()
        self._active = (self.get(preferred) if preferred else None) or self.local
        logger.info(
            "providers_loaded",
            providers=[p.provider_id for p in self._providers],
            active=self._active.provider_id,
        )
        return self._active

    async def start(self) -> BaseProvider:
        """Initialize the active provider; a failing remote falls back to local."""
        async with self._lock:
            active = self._active or self.load()
            if active.is_ready():
                return active
            try:
                await active.initialize()
            except Exception as e:
                if active.kind == self.local_kind:
                    raise
                logger.warning("active_provider_unavailable", provider=active.provider_id, error=str(e))
                await active.cleanup()
                await self._fallback_to_local()
            return self._active

    # ----- switching -----

    async def switch(self, target: Union[BaseProvider, str]) -> BaseProvider:
        """
        Make `target` the active provider. The previous one is cleaned up
        first; if the target fails to initialize the previous provider is
        brought back (or local, if that fails too) and the error re-raised.
        """
        async with self._lock:
            provider = self._resolve(target)
            previous = self._active
            if provider is previous and provider.is_ready():
                return provider

            if previous is not None and previous is not provider:
                await previous.cleanup()
            try:
                await provider.initialize()
            except Exception as e:
                logger.warning("provider_switch_failed", provider=provider.provider_id, error=str(e))
                await provider.cleanup()
                await self._restore(previous, failed=provider)
                raise

            self._active = provider
            self.preferences.save_selected_provider_id(provider.provider_id)
            logger.info(
                "provider_switched",
                provider=provider.provider_id,
                previous=previous.provider_id if previous else None,
            )
            return provider

    def update_selected_model(self, model: Union[Model, str]) -> Optional[Model]:
        if self._active is None:
            return None
        return self._active.select_model(model)

    # ----- credential-driven membership -----

    async def add_remote(self, kind: str) -> BaseProvider:
        """Register a fresh, uninitialized instance of `kind`, replacing any stale one."""
        if kind == self.local_kind:
            raise UnsupportedOperation("The local provider is always registered")
        if kind not in self.remote_kinds:
            raise InvalidConfiguration(f"Unknown provider kind '{kind}'")
        async with self._lock:
            await self._remove(kind)
            provider = self._build(kind)
            self._providers.append(provider)
            logger.info("provider_added", provider=provider.provider_id)
            return provider

    async def remove_remote(self, kind: str) -> List[BaseProvider]:
        """
        Unregister every instance of `kind`. If one of them was active, local
        takes over before this returns; a local init failure is only logged.
        """
        if kind == self.local_kind:
            raise UnsupportedOperation("The local provider cannot be removed")
        async with self._lock:
            return await self._remove(kind)

    async def close(self) -> None:
        async with self._lock:
            for p in self._providers:
                await p.cleanup()
        logger.info("providers_closed")

    # ----- internals (caller holds the lock) -----

    def _resolve(self, target: Union[BaseProvider, str]) -> BaseProvider:
        if not self._providers:
            raise InvalidConfiguration("Provider registry is not loaded")
        if isinstance(target, BaseProvider):
            if target not in self._providers:
                raise InvalidConfiguration(f"Provider '{target.provider_id}' is not registered")
            return target
        provider = self.get(target)
        if provider is None:
            raise InvalidConfiguration(f"Unknown provider '{target}'")
        return provider

    async def _remove(self, kind: str) -> List[BaseProvider]:
        removed = [p for p in self._providers if p.kind == kind]
        if not removed:
            return []
        self._providers = [p for p in self._providers if p.kind != kind]
        was_active = self._active in removed
        if was_active:
            self._active = self.local

        for p in removed:
            await p.cleanup()
        logger.info("provider_removed", kind=kind, count=len(removed))

        if was_active:
            logger.info("active_provider_removed", kind=kind, fallback=self.local_kind)
            await self._fallback_to_local()
        return removed

    async def _restore(self, previous: Optional[BaseProvider], *, failed: BaseProvider) -> None:
        if previous is not None and previous is not failed and previous.kind != self.local_kind:
            self._active = previous
            try:
                await previous.initialize()
                logger.info("provider_restored", provider=previous.provider_id)
                return
            except Exception as e:
                logger.warning("provider_restore_failed", provider=previous.provider_id, error=str(e))
                await previous.cleanup()
        await self._fallback_to_local()

    async def _fallback_to_local(self) -> None:
        local = self.local
        self._active = local
        if not local.is_ready():
            try:
                await local.initialize()
            except Exception as e:
                logger.error("local_fallback_failed", error=str(e))
                return
        self.preferences.save_selected_provider_id(local.provider_id)
