from __future__ import annotations
from typing import AsyncIterator, List, Optional, Protocol, Sequence, Union

from .models import (
    ConversationMessage,
    Model,
    ProviderResponse,
    ProviderSetting,
    ProviderState,
    ProviderType,
    UsageStatistics,
)


class Provider(Protocol):
    """
    Interface the registry and callers use to talk to any LLM backend,
    local or remote. Callers never branch on the concrete class.
    """

    provider_id: str
    kind: str
    display_name: str
    provider_type: ProviderType
    requires_credential: bool

    @property
    def state(self) -> ProviderState: ...

    @property
    def available_models(self) -> List[Model]: ...

    @property
    def selected_model(self) -> Optional[Model]: ...

    def select_model(self, model: Union[Model, str]) -> Model: ...

    async def initialize(self) -> None: ...

    def is_ready(self) -> bool: ...

    async def cleanup(self) -> None: ...

    async def generate_response(
        self,
        query: str,
        context: Optional[str] = None,
        history: Sequence[ConversationMessage] = (),
        model: Union[Model, str, None] = None,
    ) -> ProviderResponse:
        """Whole-response call. Returns text, elapsed time, tokens and metadata."""
        ...

    def generate_streaming_response(
        self,
        query: str,
        context: Optional[str] = None,
        history: Sequence[ConversationMessage] = (),
        model: Union[Model, str, None] = None,
    ) -> AsyncIterator[str]:
        """
        Streaming call. An async generator of text fragments; close it
        (aclose / cancel the consumer) to release the connection early.
        """
        ...

    async def generate_raw_response(self, prompt: str, model: Union[Model, str, None] = None) -> str: ...

    async def summarize_conversation(
        self, messages: Sequence[ConversationMessage], model: Union[Model, str, None] = None
    ) -> str: ...

    async def validate_configuration(self) -> None: ...

    def get_configurable_settings(self) -> List[ProviderSetting]: ...

    def update_setting(self, setting_id: str, value: object) -> None: ...

    async def reset_conversation(self) -> None: ...

    def get_usage_statistics(self) -> UsageStatistics: ...


class CredentialVault(Protocol):
    """Secret store keyed by '{kind}_api_key'. Platform specifics live behind it."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, secret: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def exists(self, key: str) -> bool: ...


class PreferenceStore(Protocol):
    def load_selected_provider_id(self) -> Optional[str]: ...

    def save_selected_provider_id(self, provider_id: str) -> None: ...
