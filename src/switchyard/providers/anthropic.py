# src/switchyard/providers/anthropic.py
from __future__ import annotations
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from switchyard.core.errors import BackendError, MalformedResponse, classify_status
from switchyard.core.models import Capability, Completion, Model
from switchyard.providers.base import WireMessages
from switchyard.providers.factory import ProviderFactory
from switchyard.providers.remote import USER_AGENT, RemoteProvider

API_VERSION = "2023-06-01"

_CLAUDE_CAPS = (
    Capability.TEXT_GENERATION,
    Capability.CONVERSATION,
    Capability.SUMMARIZATION,
    Capability.CODE_GENERATION,
    Capability.IMAGE_ANALYSIS,
    Capability.FUNCTION_CALLING,
)


def messages_stream_fragment(payload: Any) -> Optional[str]:
    """Text of a content_block_delta frame; other event types carry no text."""
    kind = payload.get("type")
    if kind == "error":
        err = payload.get("error") or {}
        raise BackendError(f"Stream error: {err.get('message', err)}")
    if kind != "content_block_delta":
        return None
    return payload["delta"].get("text")


def split_system(messages: WireMessages) -> tuple[str, List[Dict[str, str]]]:
    """The Messages API takes the system prompt as a top-level field."""
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    turns = [m for m in messages if m["role"] != "system"]
    return "\n\n".join(system_parts), turns


@ProviderFactory.register("anthropic")
class AnthropicProvider(RemoteProvider):
    """
    Anthropic Messages API:
    - x-api-key + anthropic-version headers
    - usage reported as input_tokens + output_tokens
    - streams end when the connection closes (no [DONE] sentinel)
    """

    provider_id = "anthropic"
    kind = "anthropic"
    display_name = "Anthropic Claude"
    base_url = "https://api.anthropic.com/v1"
    default_model_id = "claude-3-5-haiku-latest"
    messages_path = "/messages"

    def catalog(self) -> Sequence[Model]:
        return [
            Model(
                id="claude-3-5-sonnet-latest",
                name="Claude 3.5 Sonnet",
                description="Balanced intelligence and speed for most tasks",
                context_window=200000,
                cost_per_token=0.000009,
                capabilities=_CLAUDE_CAPS,
                provider=self.provider_id,
            ),
            Model(
                id="claude-3-5-haiku-latest",
                name="Claude 3.5 Haiku",
                description="Fastest Claude model for lightweight tasks",
                context_window=200000,
                cost_per_token=0.0000024,
                capabilities=_CLAUDE_CAPS,
                provider=self.provider_id,
            ),
            Model(
                id="claude-3-opus-latest",
                name="Claude 3 Opus",
                description="Most capable Claude 3 model for complex work",
                context_window=200000,
                cost_per_token=0.000045,
                capabilities=_CLAUDE_CAPS,
                provider=self.provider_id,
            ),
        ]

    async def _load_models(self) -> Sequence[Model]:
        return self.catalog()

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._require_key(),
            "anthropic-version": API_VERSION,
            "User-Agent": USER_AGENT,
        }

    def build_payload(self, messages: WireMessages, *, model_id: str, max_tokens: int, stream: bool) -> Dict[str, Any]:
        system, turns = split_system(messages)
        payload: Dict[str, Any] = {
            "model": model_id,
            "messages": turns,
            "max_tokens": max_tokens,
            **self._sampling(model_id),
        }
        if system:
            payload["system"] = system
        if stream:
            payload["stream"] = True
        return payload

    async def validate_configuration(self) -> None:
        # listing models is free and still exercises the key
        response = await self.transport.request(
            "GET", self._url("/models"), headers=self._auth_headers(), timeout=self.timeout
        )
        if not response.ok:
            raise classify_status(response.status, response.text, self.display_name)

    async def _complete(self, messages: WireMessages, *, model_id: str, max_tokens: int) -> Completion:
        data = await self._post_json(
            self.messages_path,
            self.build_payload(messages, model_id=model_id, max_tokens=max_tokens, stream=False),
        )
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise MalformedResponse(f"Invalid response format from {self.display_name}")
        text = "".join(
            b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"
        )

        total = None
        usage = data.get("usage")
        if isinstance(usage, dict):
            total = int(usage.get("input_tokens", 0)) + int(usage.get("output_tokens", 0))
        return Completion(text=text, total_tokens=total, raw=data)

    def _stream(self, messages: WireMessages, *, model_id: str, max_tokens: int) -> AsyncIterator[str]:
        payload = self.build_payload(messages, model_id=model_id, max_tokens=max_tokens, stream=True)
        return self._stream_fragments(self.messages_path, payload, messages_stream_fragment)
