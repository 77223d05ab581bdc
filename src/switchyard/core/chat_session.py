from __future__ import annotations
from contextlib import aclosing
from typing import AsyncIterator, List, Optional

from .errors import InvalidConfiguration
from .models import ConversationMessage, ProviderResponse
from .ports import Provider


class ChatSession:
    """In-memory conversation that always talks to the registry's active provider."""

    def __init__(self, registry, context: Optional[str] = None):
        self.registry = registry
        self.context = context
        self.history: List[ConversationMessage] = []

    @property
    def provider(self) -> Provider:
        provider = self.registry.active
        if provider is None:
            raise InvalidConfiguration("No active provider")
        return provider

    async def run_turn(self, user_text: str) -> ProviderResponse:
        provider = self.provider
        prior = list(self.history)
        self.history.append(ConversationMessage("user", user_text))
        response = await provider.generate_response(user_text, self.context, prior)
        self.history.append(ConversationMessage("assistant", response.text))
        return response

    async def run_turn_stream(self, user_text: str) -> AsyncIterator[str]:
        provider = self.provider
        prior = list(self.history)
        self.history.append(ConversationMessage("user", user_text))
        partial: list[str] = []
        try:
            async with aclosing(
                provider.generate_streaming_response(user_text, self.context, prior)
            ) as fragments:
                async for piece in fragments:
                    partial.append(piece)
                    yield piece
        finally:
            if partial:
                self.history.append(ConversationMessage("assistant", "".join(partial)))

    async def summarize(self) -> str:
        if not self.history:
            return ""
        return await self.provider.summarize_conversation(self.history)

    async def reset(self) -> None:
        self.history.clear()
        await self.provider.reset_conversation()
