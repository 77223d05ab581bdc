from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from dotenv import load_dotenv

from .accounting.tokens import TokenCounter
from .config_loader import load_config
from .core.errors import PartialFailure
from .core.ports import CredentialVault, PreferenceStore
from .logging_setup import configure_logging, get_logger
from .preferences.store import MemoryPreferenceStore, YamlPreferenceStore
from .providers.base import BaseProvider
from .providers.factory import ProviderFactory
from .providers.param_policy import ParamPolicy
from .providers.registry import LOCAL_KIND, ProviderRegistry
from .secrets.keys import ApiKeyStore, key_formats_from_config
from .secrets.vaults import DEFAULT_SERVICE, build_vault
from .transport.http import HttpTransport

logger = get_logger(__name__)


@dataclass
class AppContext:
    """Everything the app shares, built once in build_app and passed down."""

    cfg: Dict[str, Any]
    paths: Dict[str, Path]
    vault: CredentialVault
    key_store: ApiKeyStore
    transport: HttpTransport
    preferences: PreferenceStore
    registry: ProviderRegistry
    token_counter: TokenCounter = field(default_factory=TokenCounter)

    async def store_credential(self, kind: str, secret: str) -> BaseProvider:
        """Validate and store a key, then register a fresh provider for it."""
        self.key_store.store(kind, secret)
        return await self.registry.add_remote(kind)

    async def delete_credential(self, kind: str) -> None:
        self.key_store.delete(kind)
        await self.registry.remove_remote(kind)

    async def clear_credentials(self) -> List[str]:
        try:
            cleared = self.key_store.clear_all()
        except PartialFailure as e:
            # keep the registry in step with whatever did get deleted
            for kind in e.succeeded:
                await self.registry.remove_remote(kind)
            raise
        for kind in cleared:
            await self.registry.remove_remote(kind)
        return cleared

    async def close(self) -> None:
        await self.registry.close()
        await self.transport.aclose()


def _resolve(path_str: str, base: Path) -> Path:
    p = Path(path_str).expanduser()
    return p if p.is_absolute() else (base / p)


def _param_policy(kind: str, provider_cfg: Dict[str, Any], config_dir: Path) -> Optional[ParamPolicy]:
    # inline rules win over a policy file
    if provider_cfg.get("param_rules"):
        return ParamPolicy.from_config(provider_cfg["param_rules"])

    policy_file = provider_cfg.get("policy_file")
    if policy_file:
        policy_path = _resolve(str(policy_file), config_dir)
    else:
        # default location: config/providers/<kind>.yaml
        policy_path = config_dir / "providers" / f"{kind}.yaml"

    if policy_path.exists():
        logger.debug("param_policy_loaded", provider=kind, path=str(policy_path))
        return ParamPolicy.load(policy_path)
    return None


def build_app(config_path: Path) -> AppContext:
    """
    Composition root: load .env + YAML, configure logging, then wire the vault,
    key store, transport, preferences and provider registry.
    The registry is loaded but nothing is initialized yet (see ProviderRegistry.start).
    """
    load_dotenv()
    cfg = load_config(config_path)
    config_dir = config_path.resolve().parent
    configure_logging(cfg["logging"]["level"])

    # ----- Providers -----
    ProviderFactory.ensure_imports()  # make sure built-ins register
    remote_kinds = [k for k in ProviderFactory.kinds() if k != LOCAL_KIND]
    providers_cfg: Dict[str, Any] = cfg.get("providers") or {}

    # ----- Secrets -----
    secrets_cfg = cfg.get("secrets") or {}
    vault = build_vault(secrets_cfg["method"], service=secrets_cfg.get("service", DEFAULT_SERVICE))
    key_store = ApiKeyStore(vault, remote_kinds, key_formats_from_config(secrets_cfg.get("key_formats")))

    # ----- Preferences -----
    pref_path_raw = (cfg.get("preferences") or {}).get("path")
    preferences: PreferenceStore
    if pref_path_raw:
        pref_path: Optional[Path] = _resolve(str(pref_path_raw), config_dir)
        preferences = YamlPreferenceStore(pref_path)
    else:
        pref_path = None
        preferences = MemoryPreferenceStore()

    transport = HttpTransport(timeout=float((cfg.get("runtime") or {}).get("timeout", 60.0)))
    token_counter = TokenCounter((cfg.get("accounting") or {}).get("encoding"))

    def build_provider(kind: str) -> BaseProvider:
        provider_cfg = providers_cfg.get(kind) or {}
        return ProviderFactory.build(
            kind,
            provider_cfg=provider_cfg,
            key_store=key_store,
            transport=transport,
            token_counter=token_counter,
            param_policy=_param_policy(kind, provider_cfg, config_dir),
        )

    registry = ProviderRegistry(build_provider, key_store, preferences, remote_kinds=remote_kinds)
    registry.load()

    paths: Dict[str, Path] = {"config_dir": config_dir}
    if pref_path is not None:
        paths["preferences"] = pref_path

    return AppContext(
        cfg=cfg,
        paths=paths,
        vault=vault,
        key_store=key_store,
        transport=transport,
        preferences=preferences,
        registry=registry,
        token_counter=token_counter,
    )
