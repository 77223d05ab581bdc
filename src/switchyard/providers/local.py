from __future__ import annotations
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

from switchyard.accounting.tokens import TokenCounter
from switchyard.core.errors import InvalidConfiguration
from switchyard.core.models import Completion, Model, ProviderType
from switchyard.providers.base import BaseProvider, WireMessages
from switchyard.providers.echo import EchoEngine
from switchyard.providers.factory import ProviderFactory
from switchyard.resilience.rate_limiter import RateLimiter


class InferenceEngine(Protocol):
    """On-device inference. switchyard only drives it; it never implements one."""

    async def self_check(self) -> None: ...

    def models(self) -> Sequence[Model]: ...

    async def generate(self, messages: List[Dict[str, str]], max_tokens: int) -> str: ...

    def stream(self, messages: List[Dict[str, str]], max_tokens: int) -> AsyncIterator[str]: ...

    async def reset(self) -> None: ...


_ENGINES = {"echo": EchoEngine}


@ProviderFactory.register("local")
class LocalProvider(BaseProvider):
    """
    Always-available provider backed by a local engine:
    - no credential, no cost model
    - rate-limit spacing defaults to 0
    - reset_conversation clears the engine's own context
    """

    provider_id = "local"
    kind = "local"
    display_name = "Local Model"
    provider_type = ProviderType.LOCAL
    requires_credential = False

    def __init__(self, engine: InferenceEngine, **kwargs: Any):
        kwargs.setdefault("rate_limiter", RateLimiter(0.0))
        super().__init__(**kwargs)
        self.engine = engine
        engine_models = list(engine.models())
        self.default_model_id = engine_models[0].id if engine_models else ""

    @classmethod
    def create(
        cls,
        *,
        provider_cfg: Optional[Dict[str, Any]] = None,
        token_counter: Optional[TokenCounter] = None,
        **_unused: Any,
    ) -> "LocalProvider":
        cfg = provider_cfg or {}
        engine_name = str(cfg.get("engine", "echo")).lower()
        if engine_name not in _ENGINES:
            raise InvalidConfiguration(
                f"Unknown local engine '{engine_name}'. Expected one of {sorted(_ENGINES)}"
            )
        engine = _ENGINES[engine_name](token_delay=float(cfg.get("token_delay", 0.05)))
        return cls(
            engine,
            rate_limiter=RateLimiter(float(cfg.get("min_request_interval", 0.0))),
            token_counter=token_counter,
            system_prompt=cfg.get("system_prompt"),
            max_tokens=int(cfg.get("max_tokens", 2048)),
        )

    async def validate_configuration(self) -> None:
        await self.engine.self_check()

    async def _load_models(self) -> Sequence[Model]:
        return list(self.engine.models())

    async def _complete(self, messages: WireMessages, *, model_id: str, max_tokens: int) -> Completion:
        text = await self.engine.generate(messages, max_tokens)
        return Completion(text=text)

    def _stream(self, messages: WireMessages, *, model_id: str, max_tokens: int) -> AsyncIterator[str]:
        return self.engine.stream(messages, max_tokens)

    async def reset_conversation(self) -> None:
        await self.engine.reset()

    async def cleanup(self) -> None:
        await self.engine.reset()
        await super().cleanup()
