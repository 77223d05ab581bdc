# src/switchyard/providers/openai.py
from __future__ import annotations
from typing import Any, AsyncIterator, Dict, Optional, Sequence

from switchyard.core.errors import BackendError, MalformedResponse
from switchyard.core.models import Capability, Completion, Model
from switchyard.providers.base import WireMessages
from switchyard.providers.factory import ProviderFactory
from switchyard.providers.remote import USER_AGENT, RemoteProvider
from switchyard.streaming.sse import chat_completion_delta

_CHAT_CAPS = (
    Capability.TEXT_GENERATION,
    Capability.CONVERSATION,
    Capability.SUMMARIZATION,
    Capability.CODE_GENERATION,
)


def _error_message(payload: Any) -> Optional[str]:
    if isinstance(payload, dict) and payload.get("error"):
        err = payload["error"]
        return str(err.get("message") if isinstance(err, dict) else err)
    return None


def chat_stream_fragment(payload: Any) -> Optional[str]:
    """Delta content of a chunk; an in-band error frame ends the stream."""
    message = _error_message(payload)
    if message is not None:
        raise BackendError(f"Stream error: {message}")
    return chat_completion_delta(payload)


@ProviderFactory.register("openai")
class OpenAIProvider(RemoteProvider):
    """
    Chat-completions backend:
    - Bearer auth, JSON bodies, `data: {json}` streaming frames ending in [DONE]
    - validation is a 5-token completion against the default model
    """

    provider_id = "openai"
    kind = "openai"
    display_name = "OpenAI GPT"
    base_url = "https://api.openai.com/v1"
    default_model_id = "gpt-4o-mini"
    completions_path = "/chat/completions"

    def catalog(self) -> Sequence[Model]:
        return [
            Model(
                id="gpt-4o",
                name="GPT-4o",
                description="Most capable GPT-4 model, optimized for chat and creative tasks",
                context_window=128000,
                cost_per_token=0.00001,
                capabilities=_CHAT_CAPS + (Capability.FUNCTION_CALLING,),
                provider=self.provider_id,
            ),
            Model(
                id="gpt-4o-mini",
                name="GPT-4o Mini",
                description="Faster and more affordable GPT-4 model",
                context_window=128000,
                cost_per_token=0.000003,
                capabilities=_CHAT_CAPS + (Capability.FUNCTION_CALLING,),
                provider=self.provider_id,
            ),
            Model(
                id="gpt-3.5-turbo",
                name="GPT-3.5 Turbo",
                description="Fast and cost-effective model for simpler tasks",
                context_window=16385,
                cost_per_token=0.000001,
                capabilities=_CHAT_CAPS,
                provider=self.provider_id,
            ),
        ]

    async def _load_models(self) -> Sequence[Model]:
        return self.catalog()

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._require_key()}",
            "User-Agent": USER_AGENT,
        }

    def build_payload(self, messages: WireMessages, *, model_id: str, max_tokens: int, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "max_tokens": max_tokens,
            **self._sampling(model_id),
        }
        if stream:
            payload["stream"] = True
        return payload

    async def validate_configuration(self) -> None:
        payload = {
            "model": self.default_model_id,
            "messages": [{"role": "user", "content": "Hi"}],
            "max_tokens": 5,
        }
        await self._post_json(self.completions_path, payload)

    async def _complete(self, messages: WireMessages, *, model_id: str, max_tokens: int) -> Completion:
        data = await self._post_json(
            self.completions_path,
            self.build_payload(messages, model_id=model_id, max_tokens=max_tokens, stream=False),
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise MalformedResponse(f"Invalid response format from {self.display_name}") from None
        if not isinstance(content, str):
            raise MalformedResponse(f"Invalid response format from {self.display_name}")

        usage = data.get("usage")
        total = usage.get("total_tokens") if isinstance(usage, dict) else None
        return Completion(text=content, total_tokens=int(total) if isinstance(total, int) else None, raw=data)

    def _stream(self, messages: WireMessages, *, model_id: str, max_tokens: int) -> AsyncIterator[str]:
        payload = self.build_payload(messages, model_id=model_id, max_tokens=max_tokens, stream=True)
        return self._stream_fragments(self.completions_path, payload, chat_stream_fragment)
