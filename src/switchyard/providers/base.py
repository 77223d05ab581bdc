"""Shared provider machinery.

BaseProvider owns lifecycle state, the rate-limit gate, the usage ledger and
request-message construction. Concrete backends only supply the catalog, the
validation round trip and the wire-level `_complete` / `_stream` calls.
"""

from __future__ import annotations

import abc
import asyncio
import time
from contextlib import aclosing
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence, Union

from switchyard.accounting.tokens import TokenCounter
from switchyard.accounting.usage import UsageLedger
from switchyard.core.errors import (
    BackendError,
    InvalidConfiguration,
    ProviderError,
    UnsupportedOperation,
)
from switchyard.core.models import (
    Completion,
    ConversationMessage,
    EnergyImpact,
    Model,
    ProviderResponse,
    ProviderSetting,
    ProviderState,
    ProviderType,
    ResponseMetadata,
    UsageStatistics,
    history_window,
)
from switchyard.logging_setup import get_logger
from switchyard.resilience.rate_limiter import DEFAULT_MIN_INTERVAL, RateLimiter

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer questions using the provided context when it is relevant."
)
HISTORY_WINDOW = 10
DEFAULT_MAX_TOKENS = 2048
RAW_MAX_TOKENS = 1024

SUMMARY_TEMPLATE = (
    "Summarize the following conversation in 2-3 sentences, "
    "focusing on the main topics and outcomes:\n\n{transcript}\n\nSummary:"
)

WireMessages = List[Dict[str, str]]
ModelRef = Union[Model, str, None]


class BaseProvider(abc.ABC):
    provider_id: str = ""
    kind: str = ""
    display_name: str = ""
    provider_type: ProviderType = ProviderType.EXTERNAL
    requires_credential: bool = True
    default_model_id: str = ""

    def __init__(
        self,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        ledger: Optional[UsageLedger] = None,
        token_counter: Optional[TokenCounter] = None,
        system_prompt: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._rate_limiter = rate_limiter or RateLimiter(DEFAULT_MIN_INTERVAL)
        self._ledger = ledger or UsageLedger(track_cost=self.provider_type is ProviderType.EXTERNAL)
        self._counter = token_counter or TokenCounter()
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self.max_tokens = int(max_tokens)
        self._clock = clock

        self._state = ProviderState.UNINITIALIZED
        self._failure_reason: Optional[str] = None
        self._models: List[Model] = []
        self._selected: Optional[Model] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.provider_id!r} state={self._state.value}>"

    # ----- state -----

    @property
    def state(self) -> ProviderState:
        return self._state

    @property
    def failure_reason(self) -> Optional[str]:
        return self._failure_reason

    @property
    def available_models(self) -> List[Model]:
        return list(self._models)

    @property
    def selected_model(self) -> Optional[Model]:
        return self._selected

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def select_model(self, model: Union[Model, str]) -> Model:
        """Select by Model, id or display name. Must be in the loaded catalog."""
        key = model.id if isinstance(model, Model) else str(model)
        for m in self._models:
            if m.id == key or m.name == key:
                self._selected = m
                logger.info("model_selected", provider=self.provider_id, model=m.id)
                return m
        if isinstance(model, Model) and not self._models:
            self._selected = model
            return model
        raise InvalidConfiguration(f"Model not available: {key}")

    # ----- lifecycle -----

    async def initialize(self) -> None:
        logger.info("provider_initializing", provider=self.provider_id)
        self._state = ProviderState.INITIALIZING
        self._failure_reason = None
        try:
            await self._prepare()
            await self.validate_configuration()
            models = list(await self._load_models())
            if not models:
                raise InvalidConfiguration(f"{self.display_name} has no models available")
            self._models = models
            if self._selected is None or all(m.id != self._selected.id for m in models):
                self._selected = self._default_model()
            self._state = ProviderState.READY
        except ProviderError as e:
            self._mark_failed(e)
            raise
        except Exception as e:
            self._mark_failed(e)
            raise BackendError(f"{self.display_name} failed to initialize: {e}") from e
        finally:
            if self._state is ProviderState.INITIALIZING:
                self._mark_failed("initialization interrupted")
        logger.info("provider_initialized", provider=self.provider_id, models=len(self._models))

    def is_ready(self) -> bool:
        return (
            self._state is ProviderState.READY
            and bool(self._models)
            and (not self.requires_credential or self._has_credential())
        )

    async def cleanup(self) -> None:
        self._release()
        self._models = []
        self._selected = None
        self._state = ProviderState.CLEANED_UP
        self._failure_reason = None
        logger.info("provider_cleaned_up", provider=self.provider_id)

    def _mark_failed(self, reason: Union[BaseException, str]) -> None:
        self._release()
        self._models = []
        self._state = ProviderState.FAILED
        self._failure_reason = str(reason) or type(reason).__name__
        logger.error("provider_init_failed", provider=self.provider_id, error=self._failure_reason)

    def _default_model(self) -> Model:
        for m in self._models:
            if m.id == self.default_model_id:
                return m
        return self._models[0]

    def _ensure_ready(self) -> None:
        if not self.is_ready():
            raise InvalidConfiguration(
                f"{self.display_name} is not ready (state: {self._state.value})"
            )

    # ----- generation -----

    def build_messages(
        self,
        query: str,
        context: Optional[str] = None,
        history: Sequence[ConversationMessage] = (),
    ) -> WireMessages:
        """System message (+ context block), the last HISTORY_WINDOW turns, then the query."""
        system = self.system_prompt
        if context:
            system += f"\n\nContext:\n{context}"
        messages: WireMessages = [{"role": "system", "content": system}]
        messages.extend(m.as_wire() for m in history_window(history, HISTORY_WINDOW))
        messages.append({"role": "user", "content": query})
        return messages

    async def generate_response(
        self,
        query: str,
        context: Optional[str] = None,
        history: Sequence[ConversationMessage] = (),
        model: ModelRef = None,
    ) -> ProviderResponse:
        self._ensure_ready()
        model_id = self._resolve_model_id(model)
        messages = self.build_messages(query, context, history)

        completion, elapsed = await self._gated_completion(messages, model_id, self.max_tokens)
        tokens = self._completion_tokens(messages, completion)
        self._record(tokens, elapsed, model_id)

        return ProviderResponse(
            text=completion.text,
            processing_time=elapsed,
            token_count=tokens,
            metadata=ResponseMetadata(
                model_id=model_id,
                context_used=bool(context),
                energy_impact=EnergyImpact.from_elapsed(elapsed),
            ),
        )

    async def generate_streaming_response(
        self,
        query: str,
        context: Optional[str] = None,
        history: Sequence[ConversationMessage] = (),
        model: ModelRef = None,
    ) -> AsyncIterator[str]:
        self._ensure_ready()
        model_id = self._resolve_model_id(model)
        messages = self.build_messages(query, context, history)

        await self._rate_limiter.acquire()
        start = self._clock()
        tokens = self._counter.count_messages(messages)
        try:
            async with aclosing(self._stream(messages, model_id=model_id, max_tokens=self.max_tokens)) as fragments:
                async for fragment in fragments:
                    tokens += self._counter.count_text(fragment)
                    yield fragment
        except (GeneratorExit, asyncio.CancelledError):
            # abandoned by the consumer: neither a success nor a counted error
            logger.info("stream_abandoned", provider=self.provider_id, model=model_id)
            raise
        except ProviderError as e:
            self._record(0, self._clock() - start, model_id, error=True)
            logger.warning("stream_failed", provider=self.provider_id, model=model_id, error=str(e))
            raise
        except Exception as e:
            self._record(0, self._clock() - start, model_id, error=True)
            raise BackendError(f"{self.display_name} stream failed: {e}") from e
        self._record(tokens, self._clock() - start, model_id)

    async def generate_raw_response(self, prompt: str, model: ModelRef = None) -> str:
        self._ensure_ready()
        model_id = self._resolve_model_id(model)
        messages: WireMessages = [{"role": "user", "content": prompt}]
        completion, elapsed = await self._gated_completion(messages, model_id, RAW_MAX_TOKENS)
        self._record(self._completion_tokens(messages, completion), elapsed, model_id)
        return completion.text

    async def summarize_conversation(
        self, messages: Sequence[ConversationMessage], model: ModelRef = None
    ) -> str:
        transcript = "\n".join(f"{m.role}: {m.content}" for m in messages)
        return await self.generate_raw_response(SUMMARY_TEMPLATE.format(transcript=transcript), model=model)

    async def _gated_completion(self, messages: WireMessages, model_id: str, max_tokens: int):
        await self._rate_limiter.acquire()
        start = self._clock()
        try:
            completion = await self._complete(messages, model_id=model_id, max_tokens=max_tokens)
        except ProviderError:
            self._record(0, self._clock() - start, model_id, error=True)
            raise
        except Exception as e:
            self._record(0, self._clock() - start, model_id, error=True)
            raise BackendError(f"{self.display_name} request failed: {e}") from e
        return completion, self._clock() - start

    def _completion_tokens(self, messages: WireMessages, completion: Completion) -> int:
        if completion.total_tokens is not None:
            return completion.total_tokens
        return self._counter.count_messages(messages) + self._counter.count_text(completion.text)

    def _resolve_model_id(self, model: ModelRef) -> str:
        if isinstance(model, Model):
            return model.id
        if model:
            return str(model)
        if self._selected is not None:
            return self._selected.id
        return self.default_model_id

    def _record(self, tokens: int, elapsed: float, model_id: str, *, error: bool = False) -> None:
        cost = None
        if not error:
            info = next((m for m in self._models if m.id == model_id), None)
            if info is not None and info.cost_per_token is not None:
                cost = tokens * info.cost_per_token
        self._ledger.record(tokens=tokens, response_time=elapsed, cost=cost, error=error)

    # ----- settings / misc -----

    def get_configurable_settings(self) -> List[ProviderSetting]:
        return []

    def update_setting(self, setting_id: str, value: object) -> None:
        raise UnsupportedOperation(f"Setting updates not supported ({setting_id})")

    async def reset_conversation(self) -> None:
        return None

    def get_usage_statistics(self) -> UsageStatistics:
        return self._ledger.snapshot()

    # ----- backend hooks -----

    async def _prepare(self) -> None:
        """Acquire whatever the backend needs before validation (credentials, engine)."""

    def _has_credential(self) -> bool:
        return True

    def _release(self) -> None:
        """Drop secrets and backend handles. Must be safe in any state."""

    @abc.abstractmethod
    async def validate_configuration(self) -> None: ...

    @abc.abstractmethod
    async def _load_models(self) -> Sequence[Model]: ...

    @abc.abstractmethod
    async def _complete(self, messages: WireMessages, *, model_id: str, max_tokens: int) -> Completion: ...

    @abc.abstractmethod
    def _stream(self, messages: WireMessages, *, model_id: str, max_tokens: int) -> AsyncIterator[str]: ...
